"""Process-wide bearer token cache for the client-credentials grant."""
from __future__ import annotations

import asyncio
import base64
import logging
import time
from typing import Callable, Optional

import httpx

from lib.catalog.errors import AuthFailure
from lib.catalog.models import Credential

logger = logging.getLogger(__name__)


class TokenCache:
    """
    Holds at most one Credential and refreshes it when it has expired.

    Concurrent callers that hit an expired window wait on a lock; the first one
    issues the token request and the rest re-check the cache and reuse its result.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        client_id: str,
        client_secret: str,
        token_url: str,
        margin_s: float = 0.0,
        clock: Callable[[], float] = time.time,
    ):
        self._client = client
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_url = token_url
        self._margin_s = margin_s
        self._clock = clock
        self._credential: Optional[Credential] = None
        self._lock = asyncio.Lock()

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    def _cached(self) -> Optional[Credential]:
        cred = self._credential
        if cred is not None and cred.is_valid(self._clock(), self._margin_s):
            return cred
        return None

    async def acquire(self) -> Credential:
        cred = self._cached()
        if cred is not None:
            return cred

        async with self._lock:
            cred = self._cached()
            if cred is not None:
                return cred
            self._credential = await self._issue()
            return self._credential

    def invalidate(self) -> None:
        self._credential = None

    def _basic_auth_header(self) -> str:
        raw = f"{self._client_id}:{self._client_secret}".encode("utf-8")
        return "Basic " + base64.b64encode(raw).decode("ascii")

    async def _issue(self) -> Credential:
        if not self._client_id or not self._client_secret:
            raise AuthFailure(
                "Spotify client credentials are not set. "
                "Please set SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET."
            )

        issued_at = self._clock()
        try:
            response = await self._client.post(
                self._token_url,
                headers={
                    "Authorization": self._basic_auth_header(),
                    "Content-Type": "application/x-www-form-urlencoded",
                },
                data={"grant_type": "client_credentials"},
            )
        except httpx.HTTPError as e:
            raise AuthFailure(f"Token request failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"[token] error {response.status_code}: {response.text[:200]}")
            raise AuthFailure(f"Failed to get Spotify access token ({response.status_code})")

        try:
            body = response.json()
            token = body["access_token"]
            expires_in = float(body["expires_in"])
        except (ValueError, KeyError, TypeError) as e:
            raise AuthFailure(f"Malformed token response: {e}") from e

        if not token or expires_in <= self._margin_s:
            raise AuthFailure(f"Malformed token response: expires_in={expires_in}")

        cred = Credential(token=str(token), expires_at=issued_at + expires_in)
        if not cred.is_valid(self._clock(), self._margin_s):
            raise AuthFailure("Issued token already expired")
        logger.info(f"[token] refreshed, expires in {expires_in:.0f}s")
        return cred
