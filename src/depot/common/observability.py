"""Logging and tracing setup for the mirror service."""

from __future__ import annotations

import logging

import structlog
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

from .settings import MirrorSettings


_tracing_ready = False


def configure_logging(service_name: str, level: str = "INFO") -> None:
    """Route structlog events through stdlib logging as one JSON object per line."""

    numeric_level = logging.getLevelName(level.strip().upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format="%(message)s")
    root.setLevel(numeric_level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.dict_tracebacks,
            structlog.processors.EventRenamer("message"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(service=service_name)


def parse_otlp_headers(raw: str | None) -> dict[str, str]:
    """Parse ``key=value`` pairs separated by commas; malformed pairs are skipped."""
    pairs = (item.partition("=") for item in (raw or "").split(","))
    return {key.strip(): value.strip() for key, sep, value in pairs if key.strip() and sep and value.strip()}


def _span_processor(settings: MirrorSettings) -> SpanProcessor:
    if not settings.otel_exporter_endpoint:
        return SimpleSpanProcessor(InMemorySpanExporter())
    exporter = OTLPSpanExporter(
        endpoint=settings.otel_exporter_endpoint,
        headers=parse_otlp_headers(settings.otel_exporter_headers),
    )
    return BatchSpanProcessor(exporter)


def configure_tracing(service_name: str, settings: MirrorSettings) -> None:
    """Install a tracer provider once per process and trace outbound upstream calls."""

    global _tracing_ready
    if _tracing_ready:
        return
    if not isinstance(trace.get_tracer_provider(), TracerProvider):
        ratio = min(1.0, max(0.0, settings.otel_sampler_ratio))
        provider = TracerProvider(
            resource=Resource.create({"service.name": service_name}),
            sampler=TraceIdRatioBased(ratio),
        )
        provider.add_span_processor(_span_processor(settings))
        trace.set_tracer_provider(provider)
    HTTPXClientInstrumentor().instrument()
    _tracing_ready = True


def instrument_app(app: FastAPI) -> None:
    FastAPIInstrumentor.instrument_app(app, tracer_provider=trace.get_tracer_provider())
