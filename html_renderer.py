# html_renderer.py
from __future__ import annotations
import html

from lib.catalog.projection import Preview

EMPTY_SELECTION_MESSAGE = "Select data fields to preview your CSV format"


def render_preview_html(playlist_name: str, total: int, preview: Preview) -> str:
    name = html.escape(playlist_name or "")

    if preview.empty:
        table_html = f'<div class="preview-empty">{html.escape(EMPTY_SELECTION_MESSAGE)}</div>'
    else:
        head = "".join(f"<th>{html.escape(h)}</th>" for h in preview.headers)
        rows = []
        for index, cells in preview.rows:
            tds = "".join(f"<td>{html.escape(c)}</td>" for c in cells)
            rows.append(f"        <tr>\n          <td>{index}</td>{tds}\n        </tr>")
        rows_html = "\n".join(rows)
        table_html = f"""<table class="preview-table">
    <thead>
      <tr>
        <th>#</th>{head}
      </tr>
    </thead>
    <tbody>
{rows_html}
    </tbody>
  </table>"""

    page = f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <title>{name} - Spotify to CSV</title>
  <style>
    body {{
      font-family: system-ui, -apple-system, BlinkMacSystemFont, "Segoe UI", sans-serif;
      padding: 24px;
    }}
    table {{
      border-collapse: collapse;
      width: 100%;
    }}
    th, td {{
      border: 1px solid #ccc;
      padding: 6px 8px;
      font-size: 12px;
    }}
    th {{
      background: #f5f5f5;
    }}
    .preview-empty {{
      color: #a7a7a7;
    }}
  </style>
</head>
<body>
  <h1>{name}</h1>
  <p>{total} tracks</p>
  {table_html}
</body>
</html>
"""
    return page
