"""Ordered upstream lookup: first upstream answering 200 wins."""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, Optional, Sequence
from urllib.parse import quote

import httpx
import structlog
from opentelemetry import trace

from ..common.metrics import GLOBAL_REGISTRY, Counter
from .errors import UpstreamUnavailable


LOGGER = structlog.get_logger("depot.mirror.upstream")
TRACER = trace.get_tracer("depot.mirror.upstream")

DEFAULT_TIMEOUT_SECONDS = 30.0

UPSTREAM_ATTEMPT_COUNTER = GLOBAL_REGISTRY.register(
    Counter("depot_upstream_attempts_total", "Requests issued to upstream repositories")
)
UPSTREAM_FAILURE_COUNTER = GLOBAL_REGISTRY.register(
    Counter("depot_upstream_failures_total", "Upstream attempts failing with network errors or 5xx")
)


@dataclass
class FetchResult:
    """A 200 response whose body has not been read yet."""

    url: str
    response: httpx.Response

    def iter_bytes(self) -> AsyncIterator[bytes]:
        return self.response.aiter_bytes()

    async def aclose(self) -> None:
        await self.response.aclose()


class UpstreamResolver:
    def __init__(
        self,
        upstreams: Sequence[str],
        http_client: httpx.AsyncClient,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        if not upstreams:
            raise ValueError("At least one upstream is required")
        self._upstreams = tuple(url.rstrip("/") for url in upstreams)
        self._http = http_client
        self._timeout = httpx.Timeout(timeout_seconds)

    @property
    def upstreams(self) -> tuple[str, ...]:
        return self._upstreams

    @staticmethod
    def build_url(base_url: str, relative_path: str) -> str:
        return f"{base_url.rstrip('/')}/{quote(relative_path)}"

    async def fetch(self, relative_path: str) -> Optional[FetchResult]:
        """Try each upstream in configured order and return the first 200.

        A 4xx means the artifact is not on that upstream; network errors,
        timeouts and 5xx responses are logged and skipped. ``None`` means no
        upstream had the artifact.
        """

        with TRACER.start_as_current_span("upstream.fetch", attributes={"depot.path": relative_path}) as span:
            for base_url in self._upstreams:
                url = self.build_url(base_url, relative_path)
                try:
                    response = await self._attempt(url)
                except UpstreamUnavailable as exc:
                    UPSTREAM_FAILURE_COUNTER.inc()
                    LOGGER.warning("upstream_failed", url=exc.url, reason=exc.reason, status=exc.status_code)
                    continue
                if response is None:
                    continue
                span.set_attribute("depot.upstream", url)
                return FetchResult(url=url, response=response)
            span.set_attribute("depot.upstream", "")
        return None

    async def _attempt(self, url: str) -> Optional[httpx.Response]:
        UPSTREAM_ATTEMPT_COUNTER.inc()
        LOGGER.info("upstream_attempt", url=url)
        request = self._http.build_request("GET", url, timeout=self._timeout)
        try:
            response = await self._http.send(request, stream=True, follow_redirects=True)
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(url, f"{type(exc).__name__}: {exc}") from exc

        if response.status_code == 200:
            return response
        await response.aclose()
        if 400 <= response.status_code < 500:
            LOGGER.info("upstream_miss", url=url, status=response.status_code)
            return None
        raise UpstreamUnavailable(url, "unexpected status", status_code=response.status_code)
