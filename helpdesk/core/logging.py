"""Process-wide logging and tracing for the helpdesk API and polling client.

Everything the project logs lives under the ``helpdesk`` logger tree: store
outages from the repository, agent promotion and demotion from the role
resolver, triage fallbacks and the poller's offline transitions. Ticket
creation and status writes are traced as ``helpdesk.*`` spans and exported
over OTLP/HTTP when ``HELPDESK_OTEL_ENABLED`` is set.
"""

from __future__ import annotations

import logging
from logging.config import dictConfig

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from helpdesk.core.config import Settings

APP_LOGGER = "helpdesk"

# Request-level chatter from the HTTP client and the SQL engine drowns out
# queue events at INFO.
_QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")

_TRACER_INITIALISED = False


def parse_headers(header_string: str | None) -> dict[str, str]:
    """Parse ``HELPDESK_OTEL_EXPORTER_OTLP_HEADERS`` (``key=value,key2=value2``)."""

    if not header_string:
        return {}
    headers: dict[str, str] = {}
    for item in header_string.split(","):
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            continue
        headers[key.strip()] = value.strip()
    return headers


def configure_logging(settings: Settings) -> logging.Logger:
    """Route the ``helpdesk`` tree to stderr and return its root logger."""

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    loggers: dict[str, dict[str, object]] = {APP_LOGGER: {"level": level}}
    for name in _QUIET_LOGGERS:
        loggers[name] = {"level": max(level, logging.WARNING)}

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"default": {"format": settings.log_format}},
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "level": level,
                }
            },
            "loggers": loggers,
            "root": {"handlers": ["default"], "level": level},
        }
    )
    return logging.getLogger(APP_LOGGER)


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Export the service's ticket spans when tracing is switched on.

    Returns the installed provider, or ``None`` when tracing is disabled or a
    provider is already installed in this process.
    """

    global _TRACER_INITIALISED

    if _TRACER_INITIALISED or not settings.otel_enabled:
        return None

    provider = TracerProvider(
        resource=Resource(
            attributes={
                "service.name": settings.otel_service_name,
                "service.namespace": APP_LOGGER,
                "deployment.environment": settings.environment,
            }
        )
    )

    exporter_kwargs: dict[str, object] = {}
    if settings.otel_exporter_otlp_endpoint:
        exporter_kwargs["endpoint"] = settings.otel_exporter_otlp_endpoint
    headers = parse_headers(settings.otel_exporter_otlp_headers)
    if headers:
        exporter_kwargs["headers"] = headers

    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(**exporter_kwargs)))
    trace.set_tracer_provider(provider)
    _TRACER_INITIALISED = True
    return provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    """Flush pending ticket spans on application shutdown."""

    if provider is None:
        return

    global _TRACER_INITIALISED
    provider.shutdown()
    _TRACER_INITIALISED = False
