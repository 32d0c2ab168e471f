"""
Per-track enrichment: track detail + audio features, merged into one record.

Tracks are processed in chunks of `concurrency_limit`. A chunk's pairs all run at
once; the next chunk starts only when every pair in the current one has settled.
A failing track is logged and left out of the result; the batch itself never fails.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Iterator, List, Sequence, TypeVar

from lib.catalog.models import (
    EnrichmentFailure,
    EnrichmentResult,
    EnrichmentSuccess,
    MergedTrackRecord,
    TrackRef,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
Fetcher = Callable[[str], Awaitable[Dict[str, Any]]]

AUDIO_FEATURE_KEYS = (
    "acousticness",
    "danceability",
    "energy",
    "instrumentalness",
    "key",
    "liveness",
    "loudness",
    "mode",
    "speechiness",
    "tempo",
    "time_signature",
    "valence",
)


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    if size <= 0:
        raise ValueError("size must be > 0")
    for i in range(0, len(items), size):
        yield list(items[i:i + size])


def merge_track_detail(track: Dict[str, Any], features: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of `track` with the audio feature keys taken from `features` (features win)."""
    merged = dict(track)
    for key in AUDIO_FEATURE_KEYS:
        merged[key] = features.get(key)
    return merged


def enrichable_ids(track_refs: Iterable[TrackRef]) -> List[str]:
    """Distinct track ids in playlist order; local files (no id) are skipped."""
    seen = set()
    ids: List[str] = []
    for ref in track_refs:
        if not ref.id or ref.id in seen:
            continue
        seen.add(ref.id)
        ids.append(ref.id)
    return ids


class BatchAggregator:
    def __init__(self, fetch_track: Fetcher, fetch_features: Fetcher, concurrency_limit: int = 5):
        if concurrency_limit <= 0:
            raise ValueError("concurrency_limit must be > 0")
        self._fetch_track = fetch_track
        self._fetch_features = fetch_features
        self.concurrency_limit = concurrency_limit

    async def enrich_one(self, track_id: str) -> EnrichmentResult:
        # return_exceptions: both halves settle before the pair is judged
        track, features = await asyncio.gather(
            self._fetch_track(track_id),
            self._fetch_features(track_id),
            return_exceptions=True,
        )
        for part in (track, features):
            if isinstance(part, BaseException):
                if not isinstance(part, Exception):
                    raise part
                return EnrichmentFailure(track_id=track_id, reason=str(part) or type(part).__name__)
        return EnrichmentSuccess(MergedTrackRecord(track_id, merge_track_detail(track, features)))

    async def run(self, track_refs: Sequence[TrackRef]) -> List[EnrichmentResult]:
        """All per-track results, chunk by chunk, in playlist order."""
        ids = enrichable_ids(track_refs)
        results: List[EnrichmentResult] = []
        for n, chunk in enumerate(chunked(ids, self.concurrency_limit)):
            logger.debug(f"[enrich] chunk {n + 1}: {len(chunk)} track(s)")
            results.extend(await asyncio.gather(*(self.enrich_one(tid) for tid in chunk)))
        return results

    async def enrich(self, track_refs: Sequence[TrackRef]) -> Dict[str, MergedTrackRecord]:
        results = await self.run(track_refs)
        merged: Dict[str, MergedTrackRecord] = {}
        failed = 0
        for result in results:
            if isinstance(result, EnrichmentSuccess):
                merged[result.record.track_id] = result.record
            else:
                failed += 1
                logger.warning(f"[enrich] track {result.track_id} skipped: {result.reason}")
        logger.info(f"[enrich] {len(merged)} enriched, {failed} failed, {len(results)} total")
        return merged
