"""
Spotify catalog fetch / enrichment / CSV projection.

Public API:
  - TokenCache.acquire() -> Credential
  - ResilientFetch.call(send) -> httpx.Response
  - CatalogClient.get_playlist / get_track / get_audio_features
  - BatchAggregator.enrich(track_refs) -> {track_id: MergedTrackRecord}
  - active_fields / value_of / to_delimited_text
"""
from lib.catalog.aggregator import BatchAggregator, merge_track_detail
from lib.catalog.client import CatalogClient, playlist_to_snapshot
from lib.catalog.errors import (
    AuthFailure,
    CatalogError,
    InvalidPlaylistId,
    NetworkFailure,
    RateLimited,
    UpstreamError,
)
from lib.catalog.fetch import ResilientFetch
from lib.catalog.models import (
    Credential,
    FieldSet,
    MergedTrackRecord,
    PlaylistSession,
    PlaylistSnapshot,
    TrackRef,
)
from lib.catalog.projection import (
    FIELD_SETS,
    active_fields,
    parse_selection,
    preview_rows,
    to_delimited_text,
    value_of,
)
from lib.catalog.token_cache import TokenCache

__all__ = [
    "BatchAggregator",
    "merge_track_detail",
    "CatalogClient",
    "playlist_to_snapshot",
    "AuthFailure",
    "CatalogError",
    "InvalidPlaylistId",
    "NetworkFailure",
    "RateLimited",
    "UpstreamError",
    "ResilientFetch",
    "Credential",
    "FieldSet",
    "MergedTrackRecord",
    "PlaylistSession",
    "PlaylistSnapshot",
    "TrackRef",
    "FIELD_SETS",
    "active_fields",
    "parse_selection",
    "preview_rows",
    "to_delimited_text",
    "value_of",
    "TokenCache",
]
