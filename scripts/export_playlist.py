# Dev-only: run the full fetch -> enrich -> CSV pipeline without the server
import asyncio
import sys
from pathlib import Path

import httpx

from core import build_catalog_client, load_playlist_session, render_csv
from lib.catalog import config
from lib.catalog.projection import export_filename, parse_selection

DEFAULT_PLAYLIST = "https://open.spotify.com/playlist/3cEYpjA9oz9GiPac4AsH4n"

URL = sys.argv[1] if len(sys.argv) > 1 else DEFAULT_PLAYLIST
SETS = sys.argv[2] if len(sys.argv) > 2 else None


async def main():
    print("USING_URL:", URL)
    selection = parse_selection(SETS)

    async with httpx.AsyncClient(timeout=httpx.Timeout(config.HTTP_TIMEOUT_S)) as http:
        catalog = build_catalog_client(http)
        session, _ = await load_playlist_session(catalog, URL)

    text = render_csv(session, selection)
    if not text:
        print("nothing to export (empty selection)")
        return

    out = Path(export_filename(session.snapshot.name))
    out.write_text(text, encoding="utf-8")
    print("tracks:", len(session.snapshot.track_refs), "enriched:", session.enriched_count)
    print("perf:", session.perf)
    print("wrote:", out)


if __name__ == "__main__":
    asyncio.run(main())
