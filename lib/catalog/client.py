"""Credentialed reads against the Spotify Web API."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from lib.catalog.errors import UpstreamError
from lib.catalog.fetch import ResilientFetch
from lib.catalog.models import PlaylistSnapshot, TrackRef
from lib.catalog.token_cache import TokenCache

logger = logging.getLogger(__name__)

# Safety stop for `next` links (100 items/page -> 100k tracks)
MAX_PLAYLIST_PAGES = 1000


class CatalogClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        tokens: TokenCache,
        fetcher: ResilientFetch,
        api_url: str = "https://api.spotify.com/v1",
    ):
        self._http = http
        self._tokens = tokens
        self._fetcher = fetcher
        self._api_url = api_url.rstrip("/")

    @property
    def tokens(self) -> TokenCache:
        return self._tokens

    def _url(self, path_or_url: str) -> str:
        if path_or_url.startswith("http://") or path_or_url.startswith("https://"):
            return path_or_url
        return f"{self._api_url}/{path_or_url.lstrip('/')}"

    async def get_response(self, path_or_url: str, name: str) -> httpx.Response:
        """One GET through the retry wrapper; the response is returned whatever its status."""
        cred = await self._tokens.acquire()
        url = self._url(path_or_url)

        async def send() -> httpx.Response:
            return await self._http.get(url, headers={"Authorization": f"Bearer {cred.token}"})

        response = await self._fetcher.call(send, name=name)
        if response.status_code == 401:
            # Token revoked or rotated server-side; force a refresh on the next call
            self._tokens.invalidate()
        return response

    async def get_json(self, path_or_url: str, name: str) -> Dict[str, Any]:
        response = await self.get_response(path_or_url, name)
        if not response.is_success:
            logger.error(f"[catalog] {name} -> {response.status_code}: {response.text[:200]}")
            raise UpstreamError(f"Failed to fetch {name} from Spotify", status_code=response.status_code)
        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError(f"Invalid JSON in {name} response: {e}", status_code=response.status_code) from e
        if not isinstance(data, dict):
            raise UpstreamError(f"Unexpected {name} response shape", status_code=response.status_code)
        return data

    async def get_track(self, track_id: str) -> Dict[str, Any]:
        return await self.get_json(f"tracks/{track_id}", name="track")

    async def get_audio_features(self, track_id: str) -> Dict[str, Any]:
        return await self.get_json(f"audio-features/{track_id}", name="audio features")

    async def get_playlist(self, playlist_id: str) -> Dict[str, Any]:
        """
        Playlist object with every page of `tracks.items` merged in order.
        `tracks.next` is cleared on the returned object.
        """
        playlist = await self.get_json(f"playlists/{playlist_id}", name="playlist")
        tracks = playlist.get("tracks") or {}
        items: List[Dict[str, Any]] = list(tracks.get("items") or [])
        next_url: Optional[str] = tracks.get("next")

        pages = 1
        while next_url:
            if pages >= MAX_PLAYLIST_PAGES:
                logger.warning(f"[catalog] playlist {playlist_id}: stopping after {pages} pages")
                break
            page = await self.get_json(next_url, name="playlist page")
            items.extend(page.get("items") or [])
            next_url = page.get("next")
            pages += 1

        playlist["tracks"] = {**tracks, "items": items, "next": None}
        logger.debug(f"[catalog] playlist {playlist_id}: {len(items)} items over {pages} page(s)")
        return playlist


def playlist_to_snapshot(playlist: Dict[str, Any]) -> PlaylistSnapshot:
    """Convert a raw playlist object into a PlaylistSnapshot (removed slots are dropped)."""
    tracks = playlist.get("tracks") or {}
    refs: List[TrackRef] = []
    for item in tracks.get("items") or []:
        track = (item or {}).get("track")
        if not track:
            continue
        refs.append(TrackRef.from_track(track))

    return PlaylistSnapshot(
        id=playlist.get("id") or "",
        name=playlist.get("name") or "",
        description=playlist.get("description") or "",
        total=int(tracks.get("total") or len(refs)),
        url=(playlist.get("external_urls") or {}).get("spotify", ""),
        track_refs=tuple(refs),
        raw=playlist,
    )
