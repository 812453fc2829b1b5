from __future__ import annotations

from datetime import UTC, datetime

import pytest

from depot.mirror.listing import EMPTY_ROW, format_size, format_timestamp, render_breadcrumb, render_directory
from depot.mirror.store import CacheEntry, EntryKind


MODIFIED = datetime(2024, 3, 9, 14, 5, 7, tzinfo=UTC)


def _dir(name: str, parent: str = "") -> CacheEntry:
    relative = f"{parent}/{name}" if parent else name
    return CacheEntry(name, relative, EntryKind.DIRECTORY, None, MODIFIED)


def _file(name: str, size: int, parent: str = "") -> CacheEntry:
    relative = f"{parent}/{name}" if parent else name
    return CacheEntry(name, relative, EntryKind.FILE, size, MODIFIED)


@pytest.mark.parametrize(
    ("size", "expected"),
    [
        (0, "0 B"),
        (10, "10 B"),
        (1023, "1023 B"),
        (1024, "1 KB"),
        (1536, "1.5 KB"),
        (1024 * 1024, "1 MB"),
        (1024 * 1024 - 1, "1 MB"),
        (1024 * 1024 - 6000, "1018.14 KB"),
        (int(1.25 * 1024**3), "1.25 GB"),
        (123_456_789, "117.74 MB"),
        (2 * 1024**4, "2 TB"),
        (2048 * 1024**4, "2048 TB"),
    ],
)
def test_format_size(size: int, expected: str) -> None:
    assert format_size(size) == expected


def test_format_timestamp_is_utc() -> None:
    assert format_timestamp(MODIFIED) == "2024-03-09 14:05:07"


def test_empty_directory_renders_placeholder_row() -> None:
    page = render_directory("org/empty", [])

    assert EMPTY_ROW in page
    assert "Parent Directory" in page
    assert "<title>Index of /org/empty</title>" in page


def test_root_has_no_parent_link() -> None:
    page = render_directory("", [_file("b.txt", 10)])

    assert "Parent Directory" not in page
    assert EMPTY_ROW not in page


def test_rows_show_icon_link_size_and_timestamp() -> None:
    page = render_directory("org", [_dir("a", "org"), _file("b.txt", 10, "org")])

    assert '<td class="icon-dir"><a href="/org/a/">a/</a></td><td class="size">-</td>' in page
    assert '<td class="icon-file"><a href="/org/b.txt">b.txt</a></td><td class="size">10 B</td>' in page
    assert page.index("/org/a/") < page.index("/org/b.txt")
    assert "2024-03-09 14:05:07" in page


def test_names_are_escaped_and_links_quoted() -> None:
    page = render_directory("", [_file("<script>.jar", 1)])

    assert "<script>.jar" not in page
    assert "&lt;script&gt;.jar" in page
    assert 'href="/%3Cscript%3E.jar"' in page


def test_breadcrumb_links_each_ancestor() -> None:
    crumb = render_breadcrumb("org/acme/lib")

    assert crumb == '<a href="/">/</a> / <a href="/org/">org</a> / <a href="/org/acme/">acme</a> / lib'
    assert render_breadcrumb("") == '<a href="/">/</a>'
