"""
Field projection and delimited-text export.

Each field key maps to a pure formatter taking a TrackView. Formatters never
raise on missing data: anything absent renders as "".
"""
from __future__ import annotations

import json
import math
from decimal import ROUND_HALF_UP, Decimal
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from lib.catalog.models import FieldSet, MergedTrackRecord, Selection, TrackRef

DELIMITER = ","
QUOTE = '"'
LIST_SEPARATOR = "; "
PREVIEW_LIMIT = 10

PITCH_CLASSES = ("C", "C♯/D♭", "D", "D♯/E♭", "E", "F", "F♯/G♭", "G", "G♯/A♭", "A", "A♯/B♭", "B")


# =========================
# FieldSet カタログ（宣言順 = 列順）
# =========================

FIELD_SETS: Tuple[FieldSet, ...] = (
    FieldSet(
        "basic", "Basic Info", "Track name, artist names, album name",
        ("name", "artists", "album"), checked=True,
    ),
    FieldSet(
        "details", "Track Details", "Duration, popularity, track number, disc number, ISRC",
        ("duration_ms", "popularity", "track_number", "disc_number", "isrc"),
    ),
    FieldSet(
        "album", "Album Details", "Release date, album type, total tracks, label",
        ("album_release_date", "album_type", "album_total_tracks", "album_label"),
    ),
    FieldSet(
        "audio", "Audio Features", "Danceability, energy, key, tempo, time signature",
        ("danceability", "energy", "key", "tempo", "time_signature"),
    ),
    FieldSet(
        "analysis", "Audio Analysis",
        "Acousticness, instrumentalness, liveness, loudness, speechiness, valence",
        ("acousticness", "instrumentalness", "liveness", "loudness", "speechiness", "valence"),
    ),
    FieldSet(
        "links", "URLs & IDs", "Spotify URL, preview URL, URI, external IDs",
        ("spotify_url", "preview_url", "uri", "external_ids"),
    ),
    FieldSet(
        "markets", "Availability", "Available markets, explicit content, restrictions",
        ("available_markets", "explicit", "restrictions"),
    ),
)

FIELD_SETS_BY_NAME: Dict[str, FieldSet] = {fs.name: fs for fs in FIELD_SETS}

FRIENDLY_NAMES: Dict[str, str] = {
    "name": "Title",
    "artists": "Artists",
    "album": "Album",
    "duration_ms": "Duration",
    "popularity": "Popularity",
    "track_number": "Track Number",
    "disc_number": "Disc Number",
    "isrc": "ISRC",
    "album_release_date": "Release Date",
    "album_type": "Album Type",
    "album_total_tracks": "Total Tracks",
    "album_label": "Label",
    "danceability": "Danceability",
    "energy": "Energy",
    "key": "Key",
    "tempo": "Tempo",
    "time_signature": "Time Signature",
    "acousticness": "Acousticness",
    "instrumentalness": "Instrumentalness",
    "liveness": "Liveness",
    "loudness": "Loudness",
    "speechiness": "Speechiness",
    "valence": "Valence",
    "spotify_url": "Spotify URL",
    "preview_url": "Preview URL",
    "uri": "URI",
    "external_ids": "External IDs",
    "available_markets": "Available Markets",
    "explicit": "Explicit",
    "restrictions": "Restrictions",
}


@dataclass(frozen=True)
class TrackView:
    """The playlist's track object paired with its merged detail ({} when enrichment failed)."""
    track: Mapping[str, Any]
    detail: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def of(cls, ref: TrackRef, merged: Optional[MergedTrackRecord]) -> "TrackView":
        return cls(track=ref.raw, detail=merged.data if merged is not None else {})


# =========================
# 値フォーマッタ
# =========================


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return float(value)


def _fixed(value: Any, places: int, suffix: str = "") -> str:
    n = _number(value)
    if n is None:
        return ""
    if n == 0:
        n = 0.0
    # ties round away from zero on the exact binary value
    q = Decimal(n).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
    return f"{q}{suffix}"


def _album(view: TrackView) -> Mapping[str, Any]:
    return view.track.get("album") or {}


def format_duration(view: TrackView) -> str:
    ms = _number(view.track.get("duration_ms"))
    if ms is None:
        return ""
    # half-up, not banker's rounding
    return f"{math.floor(ms / 1000 + 0.5)}s"


def format_artists(view: TrackView) -> str:
    names = [a.get("name") for a in (view.track.get("artists") or []) if a and a.get("name")]
    return LIST_SEPARATOR.join(names)


def format_key(view: TrackView) -> str:
    key = view.detail.get("key")
    if isinstance(key, bool) or not isinstance(key, int) or not 0 <= key < len(PITCH_CLASSES):
        return ""
    return PITCH_CLASSES[key]


def format_time_signature(view: TrackView) -> str:
    ts = view.detail.get("time_signature")
    return f"{ts}/4" if ts else ""


def format_external_ids(view: TrackView) -> str:
    ids = view.track.get("external_ids") or {}
    return LIST_SEPARATOR.join(f"{k}:{v}" for k, v in ids.items())


def format_markets(view: TrackView) -> str:
    return LIST_SEPARATOR.join(_text(m) for m in (view.track.get("available_markets") or []))


def format_restrictions(view: TrackView) -> str:
    restrictions = view.track.get("restrictions")
    if not restrictions:
        return ""
    return json.dumps(restrictions, separators=(",", ":"), ensure_ascii=False)


def _track_attr(name: str) -> Callable[[TrackView], str]:
    return lambda view: _text(view.track.get(name))


def _album_attr(name: str) -> Callable[[TrackView], str]:
    return lambda view: _text(_album(view).get(name))


def _descriptor(name: str, places: int = 2, suffix: str = "") -> Callable[[TrackView], str]:
    return lambda view: _fixed(view.detail.get(name), places, suffix)


FORMATTERS: Dict[str, Callable[[TrackView], str]] = {
    # Basic Info
    "name": _track_attr("name"),
    "artists": format_artists,
    "album": _album_attr("name"),
    # Track Details
    "duration_ms": format_duration,
    "popularity": _track_attr("popularity"),
    "track_number": _track_attr("track_number"),
    "disc_number": _track_attr("disc_number"),
    "isrc": lambda view: _text((view.track.get("external_ids") or {}).get("isrc")),
    # Album Details
    "album_release_date": _album_attr("release_date"),
    "album_type": _album_attr("album_type"),
    "album_total_tracks": _album_attr("total_tracks"),
    "album_label": lambda view: _text((view.detail.get("album") or {}).get("label")),
    # Audio Features
    "danceability": _descriptor("danceability"),
    "energy": _descriptor("energy"),
    "key": format_key,
    "tempo": _descriptor("tempo", places=0),
    "time_signature": format_time_signature,
    # Audio Analysis
    "acousticness": _descriptor("acousticness"),
    "instrumentalness": _descriptor("instrumentalness"),
    "liveness": _descriptor("liveness"),
    "loudness": _descriptor("loudness", places=1, suffix=" dB"),
    "speechiness": _descriptor("speechiness"),
    "valence": _descriptor("valence"),
    # URLs & IDs
    "spotify_url": lambda view: _text((view.track.get("external_urls") or {}).get("spotify")),
    "preview_url": _track_attr("preview_url"),
    "uri": _track_attr("uri"),
    "external_ids": format_external_ids,
    # Availability
    "available_markets": format_markets,
    "explicit": lambda view: "Yes" if view.track.get("explicit") else "No",
    "restrictions": format_restrictions,
}

_unformatted = {f for fs in FIELD_SETS for f in fs.fields} - set(FORMATTERS)
if _unformatted:
    raise RuntimeError(f"No formatter for field(s): {sorted(_unformatted)}")


# =========================
# Selection / 列計算
# =========================


def default_selection() -> Selection:
    return {fs.name: fs.checked for fs in FIELD_SETS}


def parse_selection(raw: Optional[str]) -> Selection:
    """
    "basic,audio" -> {"basic": True, "audio": True, everything else False}.
    None means the catalog defaults; "" means nothing selected.
    """
    if raw is None:
        return default_selection()
    names = [n.strip() for n in raw.split(",") if n.strip()]
    unknown = [n for n in names if n not in FIELD_SETS_BY_NAME]
    if unknown:
        raise ValueError(f"Unknown field set(s): {', '.join(unknown)}")
    chosen = set(names)
    return {fs.name: fs.name in chosen for fs in FIELD_SETS}


def active_fields(selection: Mapping[str, bool]) -> List[str]:
    fields: List[str] = []
    for fs in FIELD_SETS:
        if selection.get(fs.name):
            fields.extend(fs.fields)
    return fields


def friendly_name(field_key: str) -> str:
    return FRIENDLY_NAMES.get(field_key, field_key)


def value_of(view: TrackView, field_key: str) -> str:
    formatter = FORMATTERS.get(field_key)
    if formatter is None:
        return ""
    return formatter(view)


# =========================
# 区切りテキスト出力
# =========================


def escape_cell(value: str) -> str:
    """Quote only when the delimiter appears; embedded quotes / newlines are left alone."""
    return f"{QUOTE}{value}{QUOTE}" if DELIMITER in value else value


def build_rows(
    track_refs: Sequence[TrackRef],
    merged: Mapping[str, MergedTrackRecord],
    fields: Sequence[str],
) -> List[List[str]]:
    rows = []
    for ref in track_refs:
        view = TrackView.of(ref, merged.get(ref.id) if ref.id else None)
        rows.append([value_of(view, f) for f in fields])
    return rows


def to_delimited_text(
    track_refs: Sequence[TrackRef],
    merged: Mapping[str, MergedTrackRecord],
    selection: Mapping[str, bool],
) -> str:
    fields = active_fields(selection)
    if not fields:
        return ""
    lines = [DELIMITER.join(fields)]
    for row in build_rows(track_refs, merged, fields):
        lines.append(DELIMITER.join(escape_cell(cell) for cell in row))
    return "\n".join(lines)


@dataclass(frozen=True)
class Preview:
    headers: List[str]
    rows: List[Tuple[int, List[str]]]

    @property
    def empty(self) -> bool:
        return not self.headers


def preview_rows(
    track_refs: Sequence[TrackRef],
    merged: Mapping[str, MergedTrackRecord],
    selection: Mapping[str, bool],
    limit: int = PREVIEW_LIMIT,
) -> Preview:
    fields = active_fields(selection)
    if not fields:
        return Preview(headers=[], rows=[])
    body = build_rows(track_refs[:limit], merged, fields)
    return Preview(
        headers=[friendly_name(f) for f in fields],
        rows=[(i + 1, cells) for i, cells in enumerate(body)],
    )


def export_filename(playlist_name: str) -> str:
    return f"{playlist_name}_playlist.csv"
