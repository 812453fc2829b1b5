"""HTML directory index for cached paths."""

from __future__ import annotations

from datetime import UTC, datetime
from html import escape
from typing import Sequence
from urllib.parse import quote

from .paths import display_path
from .store import CacheEntry

SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
EMPTY_ROW = '<tr class="empty"><td colspan="3">This directory is empty</td></tr>'

_PAGE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>Index of {title}</title>
<style>
body {{ font-family: sans-serif; margin: 2em; }}
table {{ border-collapse: collapse; width: 100%; }}
th, td {{ text-align: left; padding: 0.25em 1em; }}
td.size, td.modified {{ white-space: nowrap; }}
.icon-dir::before {{ content: "\\1F4C1 "; }}
.icon-file::before {{ content: "\\1F4C4 "; }}
tr.empty td {{ font-style: italic; color: #777; }}
</style>
</head>
<body>
<h1>Index of {breadcrumb}</h1>
<table>
<thead><tr><th>Name</th><th>Size</th><th>Last modified</th></tr></thead>
<tbody>
{rows}
</tbody>
</table>
</body>
</html>
"""


def format_size(size: int) -> str:
    """Binary-prefixed size rounded to two decimals: ``1536 -> "1.5 KB"``."""
    if size <= 0:
        return "0 B"
    value = float(size)
    unit = 0
    # Compare the rounded value so 1048575 renders as "1 MB", not "1024 KB".
    while round(value, 2) >= 1024 and unit < len(SIZE_UNITS) - 1:
        value /= 1024
        unit += 1
    text = f"{round(value, 2):.2f}".rstrip("0").rstrip(".")
    return f"{text} {SIZE_UNITS[unit]}"


def format_timestamp(value: datetime) -> str:
    return value.astimezone(UTC).strftime(TIMESTAMP_FORMAT)


def _href(relative_path: str, directory: bool) -> str:
    if not relative_path:
        return "/"
    return "/" + quote(relative_path) + ("/" if directory else "")


def render_breadcrumb(relative_path: str) -> str:
    parts = ['<a href="/">/</a>']
    segments = [segment for segment in relative_path.split("/") if segment]
    for index, segment in enumerate(segments):
        if index == len(segments) - 1:
            parts.append(escape(segment))
        else:
            prefix = "/".join(segments[: index + 1])
            parts.append(f'<a href="{_href(prefix, True)}">{escape(segment)}</a>')
    separator = " / " if len(parts) > 1 else ""
    return parts[0] + separator + " / ".join(parts[1:])


def render_row(entry: CacheEntry) -> str:
    icon = "icon-dir" if entry.is_directory else "icon-file"
    label = entry.name + ("/" if entry.is_directory else "")
    size = "-" if entry.is_directory else format_size(entry.size or 0)
    return (
        f'<tr><td class="{icon}"><a href="{_href(entry.relative_path, entry.is_directory)}">{escape(label)}</a></td>'
        f'<td class="size">{size}</td><td class="modified">{format_timestamp(entry.modified)}</td></tr>'
    )


def render_directory(relative_path: str, entries: Sequence[CacheEntry]) -> str:
    """Render the index page for ``relative_path`` ("" is the cache root).

    Entries are rendered in the order given; the cache store already sorts
    directories ahead of files.
    """

    rows: list[str] = []
    if relative_path:
        parent, _, _ = relative_path.rpartition("/")
        rows.append(
            f'<tr><td class="icon-dir"><a href="{_href(parent, True)}">Parent Directory</a></td>'
            "<td>-</td><td></td></tr>"
        )
    if entries:
        rows.extend(render_row(entry) for entry in entries)
    else:
        rows.append(EMPTY_ROW)

    title = escape(display_path(relative_path))
    return _PAGE.format(title=title, breadcrumb=render_breadcrumb(relative_path), rows="\n".join(rows))
