"""Failures raised while resolving an artifact request."""

from __future__ import annotations

from fastapi import status


class MirrorError(Exception):
    """Base class for failures that map onto a client-visible response."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail = "Proxy error"

    def __init__(self, path: str, detail: str | None = None) -> None:
        self.path = path
        if detail is not None:
            self.detail = detail
        super().__init__(f"{self.detail}: {path}")


class InvalidPath(MirrorError):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Invalid artifact path"


class ArtifactNotFound(MirrorError):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "Artifact not found in upstreams"


class CacheWriteFailure(MirrorError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail = "Cache write failed"


class UpstreamUnavailable(Exception):
    """A single upstream could not serve a path; absorbed by the resolver."""

    def __init__(self, url: str, reason: str, status_code: int | None = None) -> None:
        self.url = url
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"{url}: {reason}")
