from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import httpx
import pytest

from depot.mirror.pipeline import FetchPipeline
from depot.mirror.store import CacheStore
from depot.mirror.upstream import UpstreamResolver


PRIVATE_MIRROR = "https://mirror.internal/maven2/"
PUBLIC_ORIGIN = "https://repo.example.org/maven2"


@dataclass
class CannedResponse:
    status_code: int = 200
    content: bytes = b""
    delay: float = 0.0
    error: Optional[type[httpx.TransportError]] = None


class FakeUpstreams:
    """Routes httpx requests to canned responses keyed by full URL; unknown URLs get 404."""

    def __init__(self) -> None:
        self.routes: dict[str, CannedResponse] = {}
        self.requested: list[str] = []

    def add(
        self,
        url: str,
        content: bytes = b"",
        status_code: int = 200,
        delay: float = 0.0,
        error: Optional[type[httpx.TransportError]] = None,
    ) -> None:
        self.routes[url] = CannedResponse(status_code=status_code, content=content, delay=delay, error=error)

    async def handle(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requested.append(url)
        canned = self.routes.get(url)
        if canned is None:
            return httpx.Response(404, content=b"not here")
        if canned.delay:
            await asyncio.sleep(canned.delay)
        if canned.error is not None:
            raise canned.error("upstream unavailable", request=request)
        return httpx.Response(canned.status_code, content=canned.content)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def upstreams() -> FakeUpstreams:
    return FakeUpstreams()


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    path = tmp_path / "cache"
    path.mkdir()
    return path


@pytest.fixture
def make_pipeline(cache_dir: Path, upstreams: FakeUpstreams) -> Callable[..., FetchPipeline]:
    def _factory(*bases: str) -> FetchPipeline:
        client = httpx.AsyncClient(transport=upstreams.transport())
        resolver = UpstreamResolver(list(bases) or [PRIVATE_MIRROR, PUBLIC_ORIGIN], client)
        return FetchPipeline(CacheStore(cache_dir), resolver)

    return _factory
