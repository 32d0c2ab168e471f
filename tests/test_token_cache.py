import asyncio
import base64
import unittest

import httpx

from lib.catalog.errors import AuthFailure
from lib.catalog.token_cache import TokenCache

TOKEN_URL = "https://accounts.spotify.com/api/token"


class _Clock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TokenCacheTests(unittest.IsolatedAsyncioTestCase):
    def _cache(self, handler, clock=None, **kwargs):
        self.seen = []

        def recording(request: httpx.Request) -> httpx.Response:
            self.seen.append(request)
            return handler(request)

        http = httpx.AsyncClient(transport=httpx.MockTransport(recording))
        self.addAsyncCleanup(http.aclose)
        return TokenCache(http, "id", "secret", TOKEN_URL, clock=clock or _Clock(), **kwargs)

    async def test_second_acquire_within_validity_uses_cache(self):
        cache = self._cache(lambda r: httpx.Response(200, json={"access_token": "abc", "expires_in": 3600}))

        first = await cache.acquire()
        second = await cache.acquire()

        self.assertEqual(len(self.seen), 1)
        self.assertIs(first, second)
        self.assertEqual(first.token, "abc")
        self.assertEqual(first.expires_at, 1000.0 + 3600)

    async def test_request_uses_basic_auth_and_form_grant(self):
        cache = self._cache(lambda r: httpx.Response(200, json={"access_token": "abc", "expires_in": 60}))
        await cache.acquire()

        request = self.seen[0]
        self.assertEqual(request.method, "POST")
        expected = "Basic " + base64.b64encode(b"id:secret").decode("ascii")
        self.assertEqual(request.headers["authorization"], expected)
        self.assertEqual(request.headers["content-type"], "application/x-www-form-urlencoded")
        self.assertEqual(request.content, b"grant_type=client_credentials")

    async def test_expired_credential_is_replaced(self):
        clock = _Clock()
        tokens = iter(["first", "second"])
        cache = self._cache(
            lambda r: httpx.Response(200, json={"access_token": next(tokens), "expires_in": 10}),
            clock=clock,
        )

        first = await cache.acquire()
        clock.now += 10  # exactly at expiry counts as expired
        second = await cache.acquire()

        self.assertEqual(first.token, "first")
        self.assertEqual(second.token, "second")
        self.assertGreater(second.expires_at, clock.now)
        self.assertEqual(len(self.seen), 2)

    async def test_margin_refreshes_early(self):
        clock = _Clock()
        cache = self._cache(
            lambda r: httpx.Response(200, json={"access_token": "t", "expires_in": 100}),
            clock=clock,
            margin_s=30,
        )
        await cache.acquire()
        clock.now += 75
        await cache.acquire()
        self.assertEqual(len(self.seen), 2)

    async def test_non_success_status_raises_auth_failure(self):
        cache = self._cache(lambda r: httpx.Response(400, json={"error": "invalid_client"}))
        with self.assertRaises(AuthFailure):
            await cache.acquire()
        self.assertIsNone(cache.credential)

    async def test_malformed_body_raises_auth_failure(self):
        cache = self._cache(lambda r: httpx.Response(200, json={"token": "nope"}))
        with self.assertRaises(AuthFailure):
            await cache.acquire()

    async def test_non_json_body_raises_auth_failure(self):
        cache = self._cache(lambda r: httpx.Response(200, text="<html>oops</html>"))
        with self.assertRaises(AuthFailure):
            await cache.acquire()

    async def test_transport_error_raises_auth_failure(self):
        def boom(request):
            raise httpx.ConnectError("down", request=request)

        cache = self._cache(boom)
        with self.assertRaises(AuthFailure):
            await cache.acquire()

    async def test_missing_credentials_fail_without_network(self):
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        self.addAsyncCleanup(http.aclose)
        cache = TokenCache(http, "", "", TOKEN_URL)
        with self.assertRaises(AuthFailure):
            await cache.acquire()

    async def test_concurrent_acquire_coalesces_refresh(self):
        async def slow(request):
            await asyncio.sleep(0.01)
            return httpx.Response(200, json={"access_token": "shared", "expires_in": 3600})

        cache = self._cache(slow)
        creds = await asyncio.gather(*(cache.acquire() for _ in range(5)))

        self.assertEqual(len(self.seen), 1)
        self.assertTrue(all(c.token == "shared" for c in creds))

    async def test_invalidate_forces_refresh(self):
        cache = self._cache(lambda r: httpx.Response(200, json={"access_token": "t", "expires_in": 3600}))
        await cache.acquire()
        cache.invalidate()
        await cache.acquire()
        self.assertEqual(len(self.seen), 2)


if __name__ == "__main__":
    unittest.main()
