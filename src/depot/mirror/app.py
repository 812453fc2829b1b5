"""Pull-through mirror service serving artifacts from a local disk cache."""

from __future__ import annotations

import hmac
import time
from contextlib import asynccontextmanager
from ipaddress import ip_address
from typing import Optional

import httpx
import structlog
from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.responses import FileResponse, HTMLResponse, PlainTextResponse

from ..common.metrics import GLOBAL_REGISTRY, Counter, Histogram
from ..common.observability import configure_logging, configure_tracing, instrument_app
from ..common.settings import MirrorSettings
from .errors import MirrorError
from .listing import render_directory
from .pipeline import FetchPipeline
from .store import CacheStore
from .upstream import UpstreamResolver


LOGGER = structlog.get_logger("depot.mirror")

REQUEST_COUNTER = GLOBAL_REGISTRY.register(Counter("depot_requests_total", "Total artifact requests"))
ERROR_COUNTER = GLOBAL_REGISTRY.register(Counter("depot_request_errors_total", "Artifact requests ending in an error"))
LATENCY_HISTOGRAM = GLOBAL_REGISTRY.register(
    Histogram(
        "depot_request_latency_seconds",
        buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 30.0],
        description="Mirror request latency",
    )
)


class MirrorState:
    def __init__(self, settings: MirrorSettings, pipeline: FetchPipeline) -> None:
        self.settings = settings
        self.pipeline = pipeline


def get_state(request: Request) -> MirrorState:
    return request.app.state.mirror  # type: ignore[attr-defined]


def require_metrics_access(request: Request, state: MirrorState = Depends(get_state)) -> None:
    """Bearer token when one is configured, loopback clients otherwise."""
    token = state.settings.metrics_token
    if token is not None:
        expected = f"Bearer {token.get_secret_value()}".encode()
        supplied = request.headers.get("authorization", "").encode()
        if not hmac.compare_digest(supplied, expected):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid metrics token")
        return

    host = request.client.host if request.client else ""
    try:
        loopback = ip_address(host).is_loopback
    except ValueError:
        loopback = False
    if not loopback:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Metrics access restricted to localhost")


def create_app(
    settings: Optional[MirrorSettings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    settings = settings or MirrorSettings()
    configure_logging("depot.mirror", settings.log_level)
    configure_tracing("depot.mirror", settings)
    store = CacheStore(settings.cache_dir)
    store.ensure_root()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.upstream_timeout_seconds),
            follow_redirects=True,
            transport=transport,
        )
        resolver = UpstreamResolver(settings.upstreams, http_client, settings.upstream_timeout_seconds)
        app.state.mirror = MirrorState(settings, FetchPipeline(store, resolver))
        LOGGER.info("mirror_started", cache_dir=str(store.root), upstreams=list(resolver.upstreams))
        try:
            yield
        finally:
            await http_client.aclose()

    # Interactive docs are disabled so every path is available to artifacts.
    app = FastAPI(title="depot-mirror", lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    instrument_app(app)

    @app.exception_handler(MirrorError)
    async def mirror_error_handler(request: Request, exc: MirrorError) -> PlainTextResponse:
        ERROR_COUNTER.inc()
        log = LOGGER.error if exc.status_code >= 500 else LOGGER.info
        log("request_failed", path=exc.path, status=exc.status_code, detail=exc.detail)
        return PlainTextResponse(exc.detail, status_code=exc.status_code)

    @app.middleware("http")
    async def record_latency(request: Request, call_next):  # noqa: ANN001 - FastAPI middleware signature
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration = time.perf_counter() - start
            LATENCY_HISTOGRAM.observe(duration)
            LOGGER.exception(
                "http_request_error",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration * 1000, 2),
            )
            raise

        duration = time.perf_counter() - start
        LATENCY_HISTOGRAM.observe(duration)
        log_kwargs = {
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round(duration * 1000, 2),
        }
        if response.status_code >= 500:
            LOGGER.error("http_request", **log_kwargs)
        else:
            LOGGER.info("http_request", **log_kwargs)
        return response

    @app.get("/-/healthz", status_code=status.HTTP_200_OK)
    async def health_check(state: MirrorState = Depends(get_state)) -> dict:
        """Health check for readiness/liveness probes."""
        store_status = state.pipeline.store.status()
        health = {
            "status": "healthy",
            "checks": {
                "cache_dir": store_status["cache_dir"],
                "writable": store_status["writable"],
                "upstreams": len(state.pipeline.resolver.upstreams),
                "inflight": len(state.pipeline.inflight_paths()),
            },
        }
        if not store_status["writable"]:
            health["status"] = "unhealthy"
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=health)
        return health

    @app.get("/-/metrics", response_class=PlainTextResponse, dependencies=[Depends(require_metrics_access)])
    async def metrics_endpoint() -> PlainTextResponse:
        return PlainTextResponse(GLOBAL_REGISTRY.render())

    @app.get("/{request_path:path}")
    async def get_artifact(request_path: str, state: MirrorState = Depends(get_state)) -> Response:
        REQUEST_COUNTER.inc()
        resolution = await state.pipeline.resolve(request_path)
        if resolution.is_listing:
            return HTMLResponse(render_directory(resolution.relative_path, resolution.entries or []))
        return FileResponse(
            resolution.location,
            headers={"X-Cache": "HIT" if resolution.from_cache else "MISS"},
        )

    return app
