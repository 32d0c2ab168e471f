from __future__ import annotations

import os
import time
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response
from starlette.middleware.gzip import GZipMiddleware
from pydantic import BaseModel

from core import (
    build_catalog_client,
    load_playlist_session,
    proxy_playlist_id,
    render_csv,
    session_summary,
)
from html_renderer import render_preview_html
from lib.cache_manager import SESSION_CACHE_TTL_S, get_session_cache
from lib.catalog import config
from lib.catalog.client import CatalogClient
from lib.catalog.errors import AuthFailure, InvalidPlaylistId
from lib.catalog.models import Credential
from lib.catalog.projection import (
    FIELD_SETS,
    active_fields,
    export_filename,
    parse_selection,
    preview_rows,
)
import logging

# Basic logging configuration to ensure logger outputs appear in the terminal
_LOG_LEVEL = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
logging.basicConfig(level=_LOG_LEVEL)
logger = logging.getLogger("uvicorn.error")
logger.setLevel(_LOG_LEVEL)

AUTH_ERROR_MESSAGE = "Failed to authenticate"
EMPTY_SELECTION_ERROR = "Select at least one field set to export"


# =========================
# Pydantic models
# =========================

class FieldSetModel(BaseModel):
    name: str
    label: str
    description: str
    fields: List[str]
    checked: bool


class FieldSetsResponse(BaseModel):
    field_sets: List[FieldSetModel]


class PlaylistMetaModel(BaseModel):
    cache_hit: Optional[bool] = None
    cache_ttl_s: Optional[int] = None
    refresh: Optional[int] = None
    fetch_ms: Optional[float] = None
    enrich_ms: Optional[float] = None
    total_api_ms: Optional[float] = None


class PlaylistSummaryResponse(BaseModel):
    playlist_id: str
    playlist_name: str
    playlist_url: Optional[str] = None
    total: int
    tracks: int
    enriched: int
    missing: List[str]  # track ids whose enrichment failed (blank cells in the CSV)
    meta: Optional[PlaylistMetaModel] = None


# =========================
# FastAPI app & CORS
# =========================

app = FastAPI(
    title="Spotify to CSV",
    version="1.0.0",
)

# Add GZip middleware for response compression (large playlists produce large CSV/JSON)
app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.on_event("startup")
async def _init_catalog_state():
    # One shared HTTP client + one token cache per process
    app.state.http = httpx.AsyncClient(timeout=httpx.Timeout(config.HTTP_TIMEOUT_S))
    app.state.catalog = build_catalog_client(app.state.http)
    logger.info("spotify-csv: startup event triggered")


@app.on_event("shutdown")
async def _close_catalog_state():
    http = getattr(app.state, "http", None)
    if http is not None:
        await http.aclose()


# デフォルトの許可オリジン
default_origins = [
    "http://localhost:3000",
    "http://localhost:5173",
]

# 環境変数 ALLOWED_ORIGINS があればそれを優先（カンマ区切り）
env_origins = os.getenv("ALLOWED_ORIGINS")
if env_origins:
    origins = [o.strip() for o in env_origins.split(",") if o.strip()]
else:
    origins = default_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AuthFailure)
async def _auth_failure_handler(request: Request, exc: AuthFailure) -> JSONResponse:
    logger.error(f"[auth] {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": AUTH_ERROR_MESSAGE})


# =========================
# Dependencies
# =========================

def get_catalog(request: Request) -> CatalogClient:
    return request.app.state.catalog


async def spotify_credential(catalog: CatalogClient = Depends(get_catalog)) -> Credential:
    """Runs before every catalog route; AuthFailure short-circuits to the 500 handler."""
    return await catalog.tokens.acquire()


def _error_response(route: str, e: Exception) -> JSONResponse:
    status = 400 if isinstance(e, (InvalidPlaylistId, ValueError)) else 500
    logger.error(f"[{route}] {type(e).__name__}: {e}")
    return JSONResponse(status_code=status, content={"error": str(e)})


# =========================
# Health check
# =========================

@app.get("/health", tags=["system"])
def health() -> Dict[str, Any]:
    return {
        "ok": True,
        "status": "ok",
        "build_commit": os.getenv("RENDER_GIT_COMMIT", "local")[:7],
    }


@app.get("/", tags=["system"])
def root() -> Dict[str, Any]:
    return {"ok": True, "status": "ok"}


@app.get("/field-sets", response_model=FieldSetsResponse)
def field_sets() -> Dict[str, Any]:
    return {
        "field_sets": [
            {
                "name": fs.name,
                "label": fs.label,
                "description": fs.description,
                "fields": list(fs.fields),
                "checked": fs.checked,
            }
            for fs in FIELD_SETS
        ]
    }


# =========================
# Proxy endpoints
# =========================

@app.get("/playlist/{playlist_id}")
async def get_playlist(
    playlist_id: str,
    catalog: CatalogClient = Depends(get_catalog),
    _cred: Credential = Depends(spotify_credential),
):
    """プレイリスト本体（全ページ分の tracks.items をまとめたもの）。ID の検証は Spotify 側に任せる。"""
    try:
        return await catalog.get_playlist(proxy_playlist_id(playlist_id))
    except AuthFailure:
        raise
    except Exception as e:
        return _error_response("api/playlist", e)


@app.get("/track/{track_id}")
async def get_track(
    track_id: str,
    catalog: CatalogClient = Depends(get_catalog),
    _cred: Credential = Depends(spotify_credential),
):
    try:
        return await catalog.get_track(track_id)
    except AuthFailure:
        raise
    except Exception as e:
        return _error_response("api/track", e)


@app.get("/audio-features/{track_id}")
async def get_audio_features(
    track_id: str,
    catalog: CatalogClient = Depends(get_catalog),
    _cred: Credential = Depends(spotify_credential),
):
    try:
        return await catalog.get_audio_features(track_id)
    except AuthFailure:
        raise
    except Exception as e:
        return _error_response("api/audio-features", e)


# =========================
# Export / preview
# =========================

@app.get("/playlist/{playlist_id}/export")
async def export_playlist(
    playlist_id: str,
    sets: Optional[str] = Query(None, description="Comma-separated field set names (default: catalog defaults)"),
    refresh: Optional[int] = Query(None, description="Bypass cache when set to 1"),
    catalog: CatalogClient = Depends(get_catalog),
    _cred: Credential = Depends(spotify_credential),
):
    """選択された FieldSet で CSV を生成してダウンロードさせる。"""
    t0_total = time.time()
    try:
        selection = parse_selection(sets)
    except ValueError as e:
        return _error_response("api/export", e)
    if not active_fields(selection):
        return JSONResponse(status_code=400, content={"error": EMPTY_SELECTION_ERROR})

    bypass = (refresh == 1)
    try:
        session, cache_hit = await load_playlist_session(catalog, playlist_id, refresh=bypass)
    except AuthFailure:
        raise
    except Exception as e:
        return _error_response("api/export", e)

    text = render_csv(session, selection)
    total_ms = (time.time() - t0_total) * 1000
    perf = session.perf
    logger.info(
        f"[PERF] route=export playlist={session.snapshot.id} "
        f"cache_hit={'true' if cache_hit else 'false'} cache_ttl_s={SESSION_CACHE_TTL_S} "
        f"cache_size={len(get_session_cache())} refresh={'1' if bypass else '0'} "
        f"fetch_ms={perf.get('fetch_ms', 0)} enrich_ms={perf.get('enrich_ms', 0)} "
        f"total_api_ms={total_ms:.1f} tracks={len(session.snapshot.track_refs)} "
        f"enriched={session.enriched_count} bytes={len(text.encode('utf-8'))}"
    )

    filename = export_filename(session.snapshot.name)
    return Response(
        content=text,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"},
    )


@app.get("/playlist/{playlist_id}/summary", response_model=PlaylistSummaryResponse)
async def summarize_playlist(
    playlist_id: str,
    refresh: Optional[int] = Query(None, description="Bypass cache when set to 1"),
    catalog: CatalogClient = Depends(get_catalog),
    _cred: Credential = Depends(spotify_credential),
):
    """エクスポート前の確認用：曲数・詳細取得に失敗した曲 ID・キャッシュ状況。"""
    t0_total = time.time()
    bypass = (refresh == 1)
    try:
        session, cache_hit = await load_playlist_session(catalog, playlist_id, refresh=bypass)
    except AuthFailure:
        raise
    except Exception as e:
        return _error_response("api/summary", e)

    perf = session.perf
    return {
        **session_summary(session),
        "meta": {
            "cache_hit": cache_hit,
            "cache_ttl_s": SESSION_CACHE_TTL_S,
            "refresh": 1 if bypass else 0,
            "fetch_ms": perf.get("fetch_ms"),
            "enrich_ms": perf.get("enrich_ms"),
            "total_api_ms": round((time.time() - t0_total) * 1000, 1),
        },
    }


@app.get("/playlist/{playlist_id}/preview", response_class=HTMLResponse)
async def preview_playlist(
    playlist_id: str,
    sets: Optional[str] = Query(None, description="Comma-separated field set names (default: catalog defaults)"),
    refresh: Optional[int] = Query(None, description="Bypass cache when set to 1"),
    catalog: CatalogClient = Depends(get_catalog),
    _cred: Credential = Depends(spotify_credential),
):
    try:
        selection = parse_selection(sets)
        session, _ = await load_playlist_session(catalog, playlist_id, refresh=(refresh == 1))
    except AuthFailure:
        raise
    except Exception as e:
        return _error_response("api/preview", e)

    snap = session.snapshot
    preview = preview_rows(snap.track_refs, session.merged, selection)
    return HTMLResponse(render_preview_html(snap.name, snap.total, preview))


# =========================
# Local dev entrypoint
# =========================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True,
    )
