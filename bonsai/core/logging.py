"""Logging and tracing wiring for the Bonsai service.

Log records carry the id of the active OpenTelemetry trace so a
``dispatch.flush`` span can be matched with the coordinator's log lines.
"""

from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from bonsai.core.config import Settings

_TRACER_INITIALISED = False

# Third-party loggers that are chatty at INFO.
_QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "aiosqlite")


class TraceContextFilter(logging.Filter):
    """Stamp ``trace_id`` and ``span_id`` onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = trace.get_current_span().get_span_context()
        if context.is_valid:
            record.trace_id = format(context.trace_id, "032x")
            record.span_id = format(context.span_id, "016x")
        else:
            record.trace_id = "-"
            record.span_id = "-"
        return True


def _parse_headers(header_string: str | None) -> dict[str, str]:
    if not header_string:
        return {}
    headers: dict[str, str] = {}
    for item in header_string.split(","):
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            continue
        headers[key.strip()] = value.strip()
    return headers


def _level(name: str | None, default: int) -> int:
    if not name:
        return default
    return getattr(logging, name.upper(), default)


def configure_logging(settings: Settings) -> logging.Logger:
    """Route every logger through one stream handler with trace ids attached."""

    level = _level(settings.log_level, logging.INFO)
    loggers: dict[str, dict[str, Any]] = {
        name: {"level": max(level, logging.WARNING)} for name in _QUIET_LOGGERS
    }
    loggers["bonsai.dispatch"] = {"level": _level(settings.dispatch_log_level, level)}

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"trace_context": {"()": TraceContextFilter}},
            "formatters": {"default": {"format": settings.log_format}},
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "filters": ["trace_context"],
                    "level": logging.NOTSET,
                }
            },
            "root": {"handlers": ["default"], "level": level},
            "loggers": loggers,
        }
    )

    logger = logging.getLogger(settings.app_name)
    logger.setLevel(level)
    return logger


def _exporter(settings: Settings) -> OTLPSpanExporter:
    options: dict[str, Any] = {}
    if settings.otel_exporter_otlp_endpoint:
        options["endpoint"] = settings.otel_exporter_otlp_endpoint
    headers = _parse_headers(settings.otel_exporter_otlp_headers)
    if headers:
        options["headers"] = headers
    return OTLPSpanExporter(**options)


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Install the global tracer provider once, when tracing is enabled."""

    global _TRACER_INITIALISED

    if _TRACER_INITIALISED or not settings.otel_enabled:
        return None

    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.otel_service_name,
                "deployment.environment": settings.environment,
            }
        )
    )
    provider.add_span_processor(BatchSpanProcessor(_exporter(settings)))
    trace.set_tracer_provider(provider)
    _TRACER_INITIALISED = True
    return provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    """Flush pending spans and release the provider."""

    global _TRACER_INITIALISED

    if provider is None:
        return
    provider.shutdown()
    _TRACER_INITIALISED = False
