"""
カタログ取得パイプラインのデータモデル。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union


@dataclass(frozen=True)
class Credential:
    """Bearer token issued by the token endpoint, with its absolute expiry (epoch seconds)."""
    token: str
    expires_at: float

    def is_valid(self, now: float, margin_s: float = 0.0) -> bool:
        return now < self.expires_at - margin_s


@dataclass(frozen=True)
class TrackRef:
    """
    プレイリストの1スロット分のトラック。

    Fields:
        id: Spotify track id (None for local files, which are never enriched)
        name / artists / album: primary attributes
        raw: the full track object as returned inside the playlist payload
    """
    id: Optional[str]
    name: str
    artists: Tuple[str, ...]
    album: str
    duration_ms: Optional[int]
    explicit: bool
    external_ids: Dict[str, str]
    external_urls: Dict[str, str]
    raw: Dict[str, Any] = field(repr=False, compare=False)

    @classmethod
    def from_track(cls, track: Dict[str, Any]) -> "TrackRef":
        album = track.get("album") or {}
        return cls(
            id=track.get("id"),
            name=track.get("name") or "",
            artists=tuple(a.get("name") or "" for a in (track.get("artists") or [])),
            album=album.get("name") or "",
            duration_ms=track.get("duration_ms"),
            explicit=bool(track.get("explicit")),
            external_ids=dict(track.get("external_ids") or {}),
            external_urls=dict(track.get("external_urls") or {}),
            raw=track,
        )


@dataclass(frozen=True)
class PlaylistSnapshot:
    """プレイリストのメタ情報 + 順序付きトラック一覧（取得後は不変）。"""
    id: str
    name: str
    description: str
    total: int
    url: str
    track_refs: Tuple[TrackRef, ...]
    raw: Dict[str, Any] = field(repr=False, compare=False)


@dataclass(frozen=True)
class MergedTrackRecord:
    """Primary track detail with the secondary (audio feature) fields copied on."""
    track_id: str
    data: Dict[str, Any]


@dataclass(frozen=True)
class EnrichmentSuccess:
    record: MergedTrackRecord


@dataclass(frozen=True)
class EnrichmentFailure:
    track_id: str
    reason: str


EnrichmentResult = Union[EnrichmentSuccess, EnrichmentFailure]


@dataclass(frozen=True)
class FieldSet:
    """A named bundle of export columns shown to the user as a single toggle."""
    name: str
    label: str
    description: str
    fields: Tuple[str, ...]
    checked: bool = False


Selection = Dict[str, bool]


@dataclass
class PlaylistSession:
    """One loaded playlist plus its enrichment mapping."""
    snapshot: PlaylistSnapshot
    merged: Dict[str, MergedTrackRecord]
    perf: Dict[str, int] = field(default_factory=dict)

    @property
    def enriched_count(self) -> int:
        return len(self.merged)

    def missing_ids(self) -> List[str]:
        return [t.id for t in self.snapshot.track_refs if t.id and t.id not in self.merged]
