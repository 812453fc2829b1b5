"""Request resolution: cache lookup, upstream fetch and cache population."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import structlog
from opentelemetry import trace

from ..common.metrics import GLOBAL_REGISTRY, Counter, Gauge
from .errors import ArtifactNotFound, CacheWriteFailure
from .paths import is_favicon_probe, normalize_request_path
from .store import CacheEntry, CacheStore
from .upstream import UpstreamResolver


LOGGER = structlog.get_logger("depot.mirror.pipeline")
TRACER = trace.get_tracer("depot.mirror.pipeline")

HIT_COUNTER = GLOBAL_REGISTRY.register(Counter("depot_cache_hits_total", "Artifacts served from cache"))
MISS_COUNTER = GLOBAL_REGISTRY.register(Counter("depot_cache_misses_total", "Artifact requests not in cache"))
LISTING_COUNTER = GLOBAL_REGISTRY.register(Counter("depot_listings_total", "Directory listings rendered"))
NOT_FOUND_COUNTER = GLOBAL_REGISTRY.register(
    Counter("depot_not_found_total", "Requests not satisfied by any upstream")
)
BYTES_WRITTEN_COUNTER = GLOBAL_REGISTRY.register(
    Counter("depot_cache_bytes_written_total", "Bytes written to the cache")
)
INFLIGHT_JOIN_COUNTER = GLOBAL_REGISTRY.register(
    Counter("depot_inflight_joins_total", "Requests that waited on a fetch already in progress")
)
INFLIGHT_GAUGE = GLOBAL_REGISTRY.register(Gauge("depot_inflight_fetches", "Upstream fetches currently in progress"))


@dataclass(frozen=True)
class Resolution:
    """Outcome of a successful request: a cached file or a directory listing."""

    relative_path: str
    location: Path
    entry: CacheEntry
    from_cache: bool
    entries: Optional[list[CacheEntry]] = None

    @property
    def is_listing(self) -> bool:
        return self.entry.is_directory


def _retrieve_exception(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()


class FetchPipeline:
    def __init__(self, store: CacheStore, resolver: UpstreamResolver) -> None:
        self._store = store
        self._resolver = resolver
        self._inflight: dict[str, asyncio.Future[int]] = {}

    @property
    def store(self) -> CacheStore:
        return self._store

    @property
    def resolver(self) -> UpstreamResolver:
        return self._resolver

    def inflight_paths(self) -> frozenset[str]:
        return frozenset(self._inflight)

    async def resolve(self, raw_path: str) -> Resolution:
        """Resolve a request path to a cached file or a directory listing.

        Raises :class:`InvalidPath`, :class:`ArtifactNotFound` or
        :class:`CacheWriteFailure` for the corresponding terminal states.
        """

        relative_path = normalize_request_path(raw_path)
        if is_favicon_probe(relative_path):
            NOT_FOUND_COUNTER.inc()
            raise ArtifactNotFound(relative_path)

        with TRACER.start_as_current_span("pipeline.resolve", attributes={"depot.path": relative_path}) as span:
            entry = await self._store.lookup(relative_path)
            if entry is not None and entry.is_directory:
                entries = await self._store.list_directory(relative_path)
                LISTING_COUNTER.inc()
                span.set_attribute("depot.outcome", "listing")
                return Resolution(relative_path, self._store.locate(relative_path), entry, True, entries)

            if entry is not None:
                HIT_COUNTER.inc()
                LOGGER.info("cache_hit", path=relative_path, bytes=entry.size)
                span.set_attribute("depot.outcome", "hit")
                return Resolution(relative_path, self._store.locate(relative_path), entry, True)

            MISS_COUNTER.inc()
            LOGGER.info("cache_miss", path=relative_path)
            span.set_attribute("depot.outcome", "miss")
            await self._populate(relative_path)

            entry = await self._store.lookup(relative_path)
            if entry is None or entry.is_directory:
                raise CacheWriteFailure(relative_path, "Cached artifact missing after store")
            return Resolution(relative_path, self._store.locate(relative_path), entry, False)

    async def _populate(self, relative_path: str) -> None:
        """Fetch ``relative_path`` once, however many requests are waiting for it."""

        while True:
            pending = self._inflight.get(relative_path)
            if pending is None:
                break
            INFLIGHT_JOIN_COUNTER.inc()
            LOGGER.info("fetch_joined", path=relative_path)
            try:
                await asyncio.shield(pending)
                return
            except asyncio.CancelledError:
                if not pending.cancelled():
                    raise
                # The leading request went away before finishing; take over.

        future: asyncio.Future[int] = asyncio.get_running_loop().create_future()
        future.add_done_callback(_retrieve_exception)
        self._inflight[relative_path] = future
        INFLIGHT_GAUGE.inc()
        try:
            written = await self._fetch_and_store(relative_path)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(written)
        finally:
            self._inflight.pop(relative_path, None)
            INFLIGHT_GAUGE.dec()

    async def _fetch_and_store(self, relative_path: str) -> int:
        existing = await self._store.lookup(relative_path)
        if existing is not None and not existing.is_directory:
            return existing.size or 0

        result = await self._resolver.fetch(relative_path)
        if result is None:
            NOT_FOUND_COUNTER.inc()
            LOGGER.info("artifact_not_found", path=relative_path, upstreams=len(self._resolver.upstreams))
            raise ArtifactNotFound(relative_path)

        try:
            with TRACER.start_as_current_span("pipeline.store", attributes={"depot.upstream": result.url}) as span:
                written = await self._store.store(relative_path, result.iter_bytes())
                span.set_attribute("depot.bytes_written", written)
        finally:
            await result.aclose()

        BYTES_WRITTEN_COUNTER.inc(written)
        LOGGER.info("cache_stored", path=relative_path, upstream=result.url, bytes=written)
        return written
