"""Request path normalization for the artifact mirror."""

from __future__ import annotations

from .errors import InvalidPath

FAVICON_PATH = "favicon.ico"


def normalize_request_path(raw_path: str) -> str:
    """Map an externally supplied request path onto a cache-relative path.

    A single trailing slash and a single leading slash are stripped, empty and
    ``.`` segments are dropped, and ``..`` or NUL-bearing segments are rejected
    with :class:`InvalidPath`. The cache root is returned as ``""``.
    """

    path = raw_path
    if len(path) > 1 and path.endswith("/"):
        path = path[:-1]
    if path.startswith("/"):
        path = path[1:]

    segments = []
    for segment in path.split("/"):
        if segment in ("", "."):
            continue
        if segment == ".." or "\x00" in segment:
            raise InvalidPath(raw_path)
        segments.append(segment)
    return "/".join(segments)


def display_path(relative_path: str) -> str:
    return "/" + relative_path if relative_path else "/"


def is_favicon_probe(relative_path: str) -> bool:
    return relative_path == FAVICON_PATH
