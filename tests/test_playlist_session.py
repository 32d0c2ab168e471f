import asyncio
import unittest

from core import (
    extract_playlist_id,
    load_playlist_session,
    proxy_playlist_id,
    render_csv,
    session_summary,
)
from lib.cache_manager import reset_session_cache
from lib.catalog.errors import InvalidPlaylistId, UpstreamError

from spotify_fakes import FakeSpotify, build_client, make_track


class ExtractPlaylistIdTests(unittest.TestCase):
    def test_accepts_https_url(self):
        url = "https://open.spotify.com/playlist/37i9dQZF1DXcBWIGoYBM5M?si=abc123"
        self.assertEqual(extract_playlist_id(url), "37i9dQZF1DXcBWIGoYBM5M")

    def test_accepts_user_url_and_uri(self):
        self.assertEqual(extract_playlist_id("https://open.spotify.com/user/me/playlist/abcDEF123"), "abcDEF123")
        self.assertEqual(extract_playlist_id("spotify:playlist:37i9dQZF1DXcBWIGoYBM5M"), "37i9dQZF1DXcBWIGoYBM5M")

    def test_allows_raw_id(self):
        raw = "37i9dQZF1DXcBWIGoYBM5M"
        self.assertEqual(extract_playlist_id(raw), raw)
        self.assertEqual(extract_playlist_id(f"<{raw}>"), raw)

    def test_rejects_garbage(self):
        for bad in ["", "   ", "https://example.com/playlist/abc", "short", "spotify:track:abc"]:
            with self.subTest(bad=bad):
                with self.assertRaises(InvalidPlaylistId):
                    extract_playlist_id(bad)

    def test_proxy_id_only_strips_uri_prefix(self):
        self.assertEqual(proxy_playlist_id("spotify:playlist:37i9dQZF1DXcBWIGoYBM5M"), "37i9dQZF1DXcBWIGoYBM5M")
        self.assertEqual(proxy_playlist_id(" pl1 "), "pl1")
        self.assertEqual(proxy_playlist_id("not-a-playlist"), "not-a-playlist")


class PlaylistSessionTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        reset_session_cache()
        self.addCleanup(reset_session_cache)
        self.fake = FakeSpotify(page_size=3)
        self.fake.add_playlist(
            "pl1AAAAAAAAAAAAAAAAAAA",
            "Road Trip",
            [make_track(f"t{i}", f"Song {i}", ["A"], "B") for i in range(7)],
        )
        self.fake.failing_features.add("t4")
        self.client = build_client(self.fake)

    def _count(self, prefix):
        return sum(1 for r in self.fake.requests if r.startswith(prefix))

    async def test_session_loads_and_tolerates_failed_enrichment(self):
        session, cache_hit = await load_playlist_session(self.client, "pl1AAAAAAAAAAAAAAAAAAA")

        self.assertFalse(cache_hit)
        self.assertEqual(len(session.snapshot.track_refs), 7)
        self.assertEqual(set(session.merged), {"t0", "t1", "t2", "t3", "t5", "t6"})
        self.assertEqual(session.missing_ids(), ["t4"])
        self.assertEqual(session.perf["enriched_count"], 6)

        text = render_csv(session, {"basic": True, "audio": True})
        self.assertEqual(len(text.split("\n")), 8)
        self.assertEqual(text.split("\n")[5], "Song 4,A,B,,,,,")

        summary = session_summary(session)
        self.assertEqual(summary["playlist_name"], "Road Trip")
        self.assertEqual(summary["missing"], ["t4"])

    async def test_second_load_is_cached_and_refresh_refetches(self):
        await load_playlist_session(self.client, "pl1AAAAAAAAAAAAAAAAAAA")
        _, hit = await load_playlist_session(
            self.client, "https://open.spotify.com/playlist/pl1AAAAAAAAAAAAAAAAAAA"
        )
        self.assertTrue(hit)
        self.assertEqual(self._count("GET /v1/playlists/pl1AAAAAAAAAAAAAAAAAAA"), 3)

        _, hit = await load_playlist_session(self.client, "pl1AAAAAAAAAAAAAAAAAAA", refresh=True)
        self.assertFalse(hit)
        self.assertEqual(self._count("GET /v1/playlists/pl1AAAAAAAAAAAAAAAAAAA"), 6)

    async def test_concurrent_loads_share_one_fetch(self):
        results = await asyncio.gather(
            load_playlist_session(self.client, "pl1AAAAAAAAAAAAAAAAAAA"),
            load_playlist_session(self.client, "pl1AAAAAAAAAAAAAAAAAAA"),
        )
        self.assertIs(results[0][0], results[1][0])
        self.assertEqual(self._count("GET /v1/tracks/t0"), 1)

    async def test_missing_playlist_fails_loudly(self):
        with self.assertRaises(UpstreamError):
            await load_playlist_session(self.client, "nopeAAAAAAAAAAAAAAAAAA")


if __name__ == "__main__":
    unittest.main()
