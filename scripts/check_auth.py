#!/usr/bin/env python3
"""
Dev-only: reproduce Spotify authentication failures.
1) direct client_credentials token request
2) GET /playlist/{id} against a locally running server
"""

import base64
import os
import sys

import requests
from dotenv import load_dotenv

env_file = os.path.join(os.path.dirname(__file__), "..", ".env")
if os.path.exists(env_file):
    print(f"✓ Loading .env from: {env_file}")
    load_dotenv(env_file)
else:
    print(f"⚠ No .env file found at: {env_file}")

TEST_PLAYLIST_ID = sys.argv[1] if len(sys.argv) > 1 else "3cEYpjA9oz9GiPac4AsH4n"


def check_token(client_id: str, client_secret: str) -> bool:
    print("\n" + "=" * 60)
    print("TEST 1: Direct Spotify Token Request (client_credentials)")
    print("=" * 60)

    auth_base64 = base64.b64encode(f"{client_id}:{client_secret}".encode("utf-8")).decode("utf-8")
    token_url = os.getenv("SPOTIFY_TOKEN_URL", "https://accounts.spotify.com/api/token")
    headers = {
        "Authorization": f"Basic {auth_base64}",
        "Content-Type": "application/x-www-form-urlencoded",
    }
    print(f"POST {token_url}")

    try:
        response = requests.post(token_url, headers=headers, data={"grant_type": "client_credentials"}, timeout=10)
    except requests.RequestException as e:
        print(f"\n❌ EXCEPTION: {e}")
        return False

    print(f"Status Code: {response.status_code}")
    if response.status_code != 200:
        print(f"❌ FAILED: {response.text[:300]}")
        if response.status_code == 400 and "invalid_client" in response.text:
            print("  The client_id or client_secret is incorrect!")
        return False

    token_data = response.json()
    if "access_token" not in token_data:
        print("❌ UNEXPECTED: 200 but no access_token in response")
        return False
    print(f"✓ SUCCESS: access_token={token_data['access_token'][:12]}... expires_in={token_data.get('expires_in')}s")
    return True


def check_server(playlist_id: str) -> bool:
    print("\n" + "=" * 60)
    print("TEST 2: FastAPI Endpoint Test (requires server running)")
    print("=" * 60)

    base_url = os.getenv("API_BASE_URL", "http://127.0.0.1:8000")
    print(f"GET {base_url}/playlist/{playlist_id}")
    try:
        response = requests.get(f"{base_url}/playlist/{playlist_id}", timeout=30)
    except requests.exceptions.ConnectionError:
        print("⚠ Server not running (connection refused)")
        print("  Start server with: uvicorn app:app --host 127.0.0.1 --port 8000")
        return False

    print(f"Status Code: {response.status_code}")
    if response.status_code != 200:
        print(f"❌ FAILED: {response.text[:300]}")
        return False
    data = response.json()
    items = (data.get("tracks") or {}).get("items") or []
    print(f"✓ SUCCESS: {data.get('name')} ({len(items)} items)")
    return True


def main() -> int:
    client_id = os.getenv("SPOTIFY_CLIENT_ID")
    client_secret = os.getenv("SPOTIFY_CLIENT_SECRET")
    print(f"SPOTIFY_CLIENT_ID: {client_id[:10] + '...' if client_id else 'NOT SET'}")
    print(f"SPOTIFY_CLIENT_SECRET: {'set' if client_secret else 'NOT SET'}")
    if not client_id or not client_secret:
        print("\n❌ ERROR: Spotify credentials not set!")
        print("Create a .env file with SPOTIFY_CLIENT_ID / SPOTIFY_CLIENT_SECRET")
        return 1

    ok = check_token(client_id, client_secret)
    ok = check_server(TEST_PLAYLIST_ID) and ok
    return 0 if ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
