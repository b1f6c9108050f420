"""Logging and tracing setup for the binary cache."""

from __future__ import annotations

import logging
from typing import Dict, Optional

import structlog
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from structlog.contextvars import bind_contextvars


# uvicorn runs with log_config=None, so its loggers propagate to the root handler.
SERVER_LOGGERS = ("uvicorn", "uvicorn.error")

_root_handler_installed = False
_tracer_provider: Optional[TracerProvider] = None


def _log_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        numeric = logging.getLevelName(level.strip().upper())
        if isinstance(numeric, int):
            return numeric
    return logging.INFO


def configure_logging(service_name: str, level: str | int | None = None) -> None:
    """Emit one JSON object per line for both structlog and stdlib loggers.

    Safe to call again: a later call only changes the level.
    """
    global _root_handler_installed
    numeric_level = _log_level(level)
    if not _root_handler_installed:
        logging.basicConfig(level=numeric_level, format="%(message)s")
        _root_handler_installed = True
    logging.getLogger().setLevel(numeric_level)
    for name in SERVER_LOGGERS:
        logging.getLogger(name).setLevel(numeric_level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.dict_tracebacks,
            structlog.processors.EventRenamer("message"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    bind_contextvars(service=service_name)


def parse_otlp_headers(headers: str | None) -> Dict[str, str]:
    """Parse ``key=value,key=value`` as used by OTEL_EXPORTER_OTLP_HEADERS."""
    result: Dict[str, str] = {}
    for item in (headers or "").split(","):
        key, _, value = item.partition("=")
        if key.strip() and value.strip():
            result[key.strip()] = value.strip()
    return result


def build_tracer_provider(
    service_name: str,
    endpoint: Optional[str] = None,
    headers: Optional[str] = None,
    sampler_ratio: float = 1.0,
) -> TracerProvider:
    """Provider that ships sampled spans to ``endpoint`` in batches.

    Without an endpoint no span processor is attached: spans still carry
    trace context through the request but are dropped when they end.
    """
    ratio = max(0.0, min(1.0, sampler_ratio))
    provider = TracerProvider(
        resource=Resource.create({"service.name": service_name}),
        sampler=ParentBased(TraceIdRatioBased(ratio)),
    )
    if endpoint:
        exporter = OTLPSpanExporter(endpoint=endpoint, headers=parse_otlp_headers(headers))
        provider.add_span_processor(BatchSpanProcessor(exporter))
    return provider


def configure_tracing(
    service_name: str,
    endpoint: Optional[str] = None,
    headers: Optional[str] = None,
    sampler_ratio: float = 1.0,
) -> TracerProvider:
    """Install the global tracer provider once per process and return it."""
    global _tracer_provider
    if _tracer_provider is not None:
        return _tracer_provider

    current = trace.get_tracer_provider()
    if isinstance(current, TracerProvider):
        # An embedding process installed its own provider first.
        _tracer_provider = current
        return current

    _tracer_provider = build_tracer_provider(service_name, endpoint, headers, sampler_ratio)
    trace.set_tracer_provider(_tracer_provider)
    return _tracer_provider


def instrument_fastapi_app(app) -> None:
    FastAPIInstrumentor.instrument_app(app, tracer_provider=trace.get_tracer_provider())


def setup_observability(service_name: str, settings) -> None:
    """Apply the ``log_level`` and ``otel_*`` fields of ``settings``."""
    configure_logging(service_name, level=settings.log_level)
    configure_tracing(
        service_name,
        endpoint=settings.otel_exporter_endpoint,
        headers=settings.otel_exporter_headers,
        sampler_ratio=settings.otel_sampler_ratio,
    )
