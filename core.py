#!/usr/bin/env python3
"""
Spotify プレイリストを取得して、
- プレイリスト基本情報 + 全トラック（ページング込み）
- 各トラックの詳細 + Audio Features（チャンク単位で並列取得）

をまとめた PlaylistSession を返し、CSV テキストに変換するコアモジュール。
"""

from __future__ import annotations

import asyncio
import logging
import re
from time import perf_counter
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlparse

import httpx

from lib.cache_manager import build_session_cache_key, get_session_cache
from lib.catalog import config
from lib.catalog.aggregator import BatchAggregator
from lib.catalog.client import CatalogClient, playlist_to_snapshot
from lib.catalog.errors import InvalidPlaylistId
from lib.catalog.fetch import ResilientFetch
from lib.catalog.models import PlaylistSession
from lib.catalog.projection import to_delimited_text
from lib.catalog.token_cache import TokenCache

logger = logging.getLogger(__name__)

# Concurrent loads of the same playlist share one task
_INFLIGHT: Dict[str, "asyncio.Task[PlaylistSession]"] = {}


# =========================
# Spotify クライアント
# =========================


def build_catalog_client(http: httpx.AsyncClient) -> CatalogClient:
    """
    環境変数の設定から CatalogClient を組み立てる。

    必要な環境変数:
    - SPOTIFY_CLIENT_ID
    - SPOTIFY_CLIENT_SECRET
    （未設定の場合は最初のトークン取得時に AuthFailure）
    """
    tokens = TokenCache(
        http,
        client_id=config.SPOTIFY_CLIENT_ID,
        client_secret=config.SPOTIFY_CLIENT_SECRET,
        token_url=config.SPOTIFY_TOKEN_URL,
        margin_s=config.TOKEN_EXPIRY_MARGIN_S,
    )
    fetcher = ResilientFetch(
        max_attempts=config.FETCH_MAX_ATTEMPTS,
        base_delay_s=config.FETCH_BASE_DELAY_S,
    )
    return CatalogClient(http, tokens, fetcher, api_url=config.SPOTIFY_API_URL)


def build_aggregator(client: CatalogClient, concurrency_limit: Optional[int] = None) -> BatchAggregator:
    return BatchAggregator(
        client.get_track,
        client.get_audio_features,
        concurrency_limit=concurrency_limit or config.ENRICH_CONCURRENCY,
    )


# =========================
# プレイリストID抽出
# =========================


def extract_playlist_id(url_or_id: str) -> str:
    """Extract a Spotify playlist ID from a full URL or a raw ID.

    Supports formats like:
    - https://open.spotify.com/playlist/<id>
    - https://open.spotify.com/user/<user>/playlist/<id>
    - spotify:playlist:<id>
    - raw 22-character ID
    """
    s = (url_or_id or "").strip()
    if s.startswith("<") and s.endswith(">"):
        s = s[1:-1].strip()
    s = s.strip('\'"')
    if not s:
        raise InvalidPlaylistId("Empty playlist URL or ID")

    m = re.match(r"^spotify:playlist:([a-zA-Z0-9]+)$", s)
    if m:
        return m.group(1)

    parsed = urlparse(s)
    host = (parsed.netloc or "").lower()
    if host.endswith("open.spotify.com"):
        parts = [p for p in (parsed.path or "").split("/") if p]
        # possible paths: playlist/<id> or user/<user>/playlist/<id>
        for i, p in enumerate(parts):
            if p == "playlist" and i + 1 < len(parts):
                candidate = parts[i + 1]
                if re.match(r"^[A-Za-z0-9]+$", candidate):
                    return candidate

    # Raw ID fallback (usually 22 chars base62)
    if re.match(r"^[A-Za-z0-9]{16,}$", s):
        return s

    raise InvalidPlaylistId(f"Could not extract Spotify playlist ID from: {s}")


def proxy_playlist_id(raw: str) -> str:
    """Pass-through id: strips a `spotify:playlist:` prefix and leaves validation to Spotify."""
    s = (raw or "").strip()
    prefix = "spotify:playlist:"
    if s.startswith(prefix):
        return s[len(prefix):]
    return s


# =========================
# プレイリスト + 詳細取得
# =========================


async def fetch_playlist_session(
    client: CatalogClient,
    playlist_id: str,
    concurrency_limit: Optional[int] = None,
) -> PlaylistSession:
    """
    プレイリスト取得（失敗したら例外）→ トラック詳細の一括取得（失敗は曲単位で無視）。
    """
    t0 = perf_counter()
    raw = await client.get_playlist(playlist_id)
    snapshot = playlist_to_snapshot(raw)
    t1 = perf_counter()

    merged = await build_aggregator(client, concurrency_limit).enrich(snapshot.track_refs)
    t2 = perf_counter()

    perf = {
        "fetch_ms": int((t1 - t0) * 1000),
        "enrich_ms": int((t2 - t1) * 1000),
        "total_ms": int((t2 - t0) * 1000),
        "tracks_count": len(snapshot.track_refs),
        "enriched_count": len(merged),
    }
    return PlaylistSession(snapshot=snapshot, merged=merged, perf=perf)


async def load_playlist_session(
    client: CatalogClient,
    url_or_id: str,
    refresh: bool = False,
) -> tuple[PlaylistSession, bool]:
    """
    Cached PlaylistSession for a playlist. Returns (session, cache_hit).
    refresh=True drops the cached session and refetches.
    """
    playlist_id = extract_playlist_id(url_or_id)
    cache = get_session_cache()
    key = build_session_cache_key(playlist_id)

    if refresh:
        cache.pop(key, None)
    else:
        cached = cache.get(key)
        if cached is not None:
            return cached, True

    task = _INFLIGHT.get(key)
    if task is None:
        task = asyncio.ensure_future(fetch_playlist_session(client, playlist_id))
        _INFLIGHT[key] = task
        try:
            session = await task
        finally:
            _INFLIGHT.pop(key, None)
        cache[key] = session
        return session, False

    logger.info(f"[session] joining in-flight load for {playlist_id}")
    return await task, False


def render_csv(session: PlaylistSession, selection: Mapping[str, bool]) -> str:
    return to_delimited_text(session.snapshot.track_refs, session.merged, selection)


def session_summary(session: PlaylistSession) -> Dict[str, Any]:
    snap = session.snapshot
    return {
        "playlist_id": snap.id,
        "playlist_name": snap.name,
        "playlist_url": snap.url,
        "total": snap.total,
        "tracks": len(snap.track_refs),
        "enriched": session.enriched_count,
        "missing": session.missing_ids(),
    }
