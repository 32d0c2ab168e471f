"""Centralized cache utilities (TTLCache settings & key builders)."""
from __future__ import annotations

import os
from cachetools import TTLCache

# Playlist session cache settings
_ENV = os.getenv("ENV", "prod").lower()
SESSION_CACHE_VERSION = int(os.getenv("SESSION_CACHE_VERSION", "1"))
SESSION_CACHE_MAXSIZE = int(os.getenv("SESSION_CACHE_MAXSIZE", "32"))
SESSION_CACHE_TTL_S = int(os.getenv("SESSION_CACHE_TTL_S", "600" if _ENV == "dev" else "1800"))

# Lazy-initialized caches
_session_cache: TTLCache | None = None


def get_session_cache() -> TTLCache:
    global _session_cache
    if _session_cache is None:
        _session_cache = TTLCache(maxsize=SESSION_CACHE_MAXSIZE, ttl=SESSION_CACHE_TTL_S)
    return _session_cache


def reset_session_cache() -> None:
    global _session_cache
    _session_cache = None


def build_session_cache_key(playlist_id: str) -> str:
    return f"pl:{SESSION_CACHE_VERSION}:{playlist_id}"
