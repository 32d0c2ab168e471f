"""Environment-driven settings for the catalog pipeline."""
from __future__ import annotations

import os

from dotenv import load_dotenv

# .env があれば読み込む（既存の環境変数は上書きしない）
load_dotenv(override=False)

SPOTIFY_CLIENT_ID = os.getenv("SPOTIFY_CLIENT_ID", "")
SPOTIFY_CLIENT_SECRET = os.getenv("SPOTIFY_CLIENT_SECRET", "")
SPOTIFY_API_URL = os.getenv("SPOTIFY_API_URL", "https://api.spotify.com/v1").rstrip("/")
SPOTIFY_TOKEN_URL = os.getenv("SPOTIFY_TOKEN_URL", "https://accounts.spotify.com/api/token")

FETCH_MAX_ATTEMPTS = int(os.getenv("FETCH_MAX_ATTEMPTS", "3"))
FETCH_BASE_DELAY_S = float(os.getenv("FETCH_BASE_DELAY_S", "1.0"))
ENRICH_CONCURRENCY = int(os.getenv("ENRICH_CONCURRENCY", "5"))
HTTP_TIMEOUT_S = float(os.getenv("HTTP_TIMEOUT_S", "20"))
TOKEN_EXPIRY_MARGIN_S = float(os.getenv("TOKEN_EXPIRY_MARGIN_S", "0"))
