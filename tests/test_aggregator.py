import asyncio
import math
import unittest

from lib.catalog.aggregator import (
    AUDIO_FEATURE_KEYS,
    BatchAggregator,
    chunked,
    enrichable_ids,
    merge_track_detail,
)
from lib.catalog.errors import UpstreamError
from lib.catalog.models import EnrichmentFailure, EnrichmentSuccess, TrackRef


def _ref(track_id):
    return TrackRef.from_track({"id": track_id, "name": f"Song {track_id}", "artists": [], "album": {}})


class _Recorder:
    """Fake fetchers that record which chunk each call ran in and how many overlapped."""

    def __init__(self, fail_track=(), fail_features=()):
        self.fail_track = set(fail_track)
        self.fail_features = set(fail_features)
        self.in_flight = set()
        self.max_in_flight = 0
        self.events = []

    async def _enter(self, kind, track_id):
        self.in_flight.add(track_id)
        self.max_in_flight = max(self.max_in_flight, len(self.in_flight))
        self.events.append(("start", kind, track_id))
        await asyncio.sleep(0)
        await asyncio.sleep(0)

    def _leave(self, kind, track_id):
        self.events.append(("end", kind, track_id))
        self.in_flight.discard(track_id)

    async def fetch_track(self, track_id):
        await self._enter("track", track_id)
        try:
            if track_id in self.fail_track:
                raise UpstreamError("Failed to fetch track from Spotify", status_code=404)
            return {"id": track_id, "name": f"Song {track_id}", "album": {"label": "Label"}}
        finally:
            self._leave("track", track_id)

    async def fetch_features(self, track_id):
        await self._enter("features", track_id)
        try:
            if track_id in self.fail_features:
                raise RuntimeError("boom")
            return {"id": track_id, "danceability": 0.5, "key": 3, "energy": None}
        finally:
            self._leave("features", track_id)


class ChunkedTests(unittest.TestCase):
    def test_chunked_basic(self):
        chunks = list(chunked(list(range(12)), 5))
        self.assertEqual([len(c) for c in chunks], [5, 5, 2])

    def test_chunked_value_error(self):
        with self.assertRaises(ValueError):
            list(chunked([1, 2, 3], 0))

    def test_enrichable_ids_skips_local_and_duplicates(self):
        refs = [_ref("a"), _ref(None), _ref("b"), _ref("a")]
        self.assertEqual(enrichable_ids(refs), ["a", "b"])


class MergeTests(unittest.TestCase):
    def test_secondary_fields_copied_onto_primary_copy(self):
        primary = {"id": "a", "name": "Song", "album": {"label": "L"}}
        merged = merge_track_detail(primary, {"danceability": 0.4, "key": 5, "analysis_url": "x"})

        self.assertEqual(merged["danceability"], 0.4)
        self.assertEqual(merged["key"], 5)
        self.assertNotIn("analysis_url", merged)
        self.assertEqual(merged["album"], {"label": "L"})
        self.assertNotIn("danceability", primary)
        for key in AUDIO_FEATURE_KEYS:
            self.assertIn(key, merged)

    def test_secondary_wins_on_collision(self):
        merged = merge_track_detail({"id": "a", "tempo": 1.0}, {"tempo": 128.0})
        self.assertEqual(merged["tempo"], 128.0)


class BatchAggregatorTests(unittest.IsolatedAsyncioTestCase):
    async def test_all_succeed(self):
        rec = _Recorder()
        agg = BatchAggregator(rec.fetch_track, rec.fetch_features, concurrency_limit=5)
        merged = await agg.enrich([_ref(str(i)) for i in range(7)])

        self.assertEqual(set(merged), {str(i) for i in range(7)})
        self.assertEqual(merged["3"].data["danceability"], 0.5)
        self.assertEqual(merged["3"].data["album"]["label"], "Label")

    async def test_chunks_run_in_sequence_with_bounded_concurrency(self):
        for n, c in [(12, 5), (5, 5), (1, 3), (9, 2)]:
            with self.subTest(n=n, c=c):
                rec = _Recorder()
                ids = [f"t{i}" for i in range(n)]
                agg = BatchAggregator(rec.fetch_track, rec.fetch_features, concurrency_limit=c)
                await agg.enrich([_ref(t) for t in ids])

                self.assertLessEqual(rec.max_in_flight, c)
                # Every call of chunk k ends before any call of chunk k+1 starts
                chunk_of = {tid: i // c for i, tid in enumerate(ids)}
                starts, ends = {}, {}
                for pos, (event, _, tid) in enumerate(rec.events):
                    k = chunk_of[tid]
                    if event == "start":
                        starts.setdefault(k, pos)
                    else:
                        ends[k] = pos
                self.assertEqual(sorted(starts), list(range(math.ceil(n / c))))
                for k in range(1, len(starts)):
                    self.assertLess(ends[k - 1], starts[k])

    async def test_pair_fetches_run_concurrently(self):
        rec = _Recorder()
        agg = BatchAggregator(rec.fetch_track, rec.fetch_features, concurrency_limit=1)
        await agg.enrich([_ref("a")])
        kinds = [(e, k) for e, k, _ in rec.events]
        self.assertEqual(kinds[:2], [("start", "track"), ("start", "features")])

    async def test_failed_tracks_are_excluded_not_fatal(self):
        rec = _Recorder(fail_track={"t1"}, fail_features={"t3", "t6"})
        agg = BatchAggregator(rec.fetch_track, rec.fetch_features, concurrency_limit=2)
        merged = await agg.enrich([_ref(f"t{i}") for i in range(8)])

        self.assertEqual(set(merged), {"t0", "t2", "t4", "t5", "t7"})

    async def test_results_are_explicit_variants(self):
        rec = _Recorder(fail_features={"b"})
        agg = BatchAggregator(rec.fetch_track, rec.fetch_features, concurrency_limit=5)
        results = await agg.run([_ref("a"), _ref("b")])

        self.assertIsInstance(results[0], EnrichmentSuccess)
        self.assertIsInstance(results[1], EnrichmentFailure)
        self.assertEqual(results[1].track_id, "b")
        self.assertEqual(results[1].reason, "boom")

    async def test_failed_pair_still_settles_before_next_chunk(self):
        rec = _Recorder(fail_track={"a"})
        agg = BatchAggregator(rec.fetch_track, rec.fetch_features, concurrency_limit=1)
        await agg.enrich([_ref("a"), _ref("b")])

        first_b = next(i for i, (e, _, t) in enumerate(rec.events) if e == "start" and t == "b")
        a_ends = [i for i, (e, _, t) in enumerate(rec.events) if e == "end" and t == "a"]
        self.assertEqual(len(a_ends), 2)
        self.assertTrue(all(i < first_b for i in a_ends))

    async def test_empty_input(self):
        rec = _Recorder()
        agg = BatchAggregator(rec.fetch_track, rec.fetch_features)
        self.assertEqual(await agg.enrich([]), {})
        self.assertEqual(rec.events, [])

    def test_concurrency_limit_must_be_positive(self):
        with self.assertRaises(ValueError):
            BatchAggregator(None, None, concurrency_limit=0)


if __name__ == "__main__":
    unittest.main()
