"""OpenTelemetry tracing for engine operations.

Every public ``StorageEngine`` call runs inside an ``operation_span`` named
``dualdb.<operation>``, carrying the collection (or join sides) and the
call's options as ``dualdb.*`` attributes. Failed calls mark their span as
errored and record the exception.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Generator

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Status, StatusCode

from dualdb.infrastructure.config import ObservabilityConfig

ATTRIBUTE_PREFIX = "dualdb."

_tracer: trace.Tracer | None = None


def setup_tracing(
    service_name: str = "dualdb",
    otlp_endpoint: str | None = None,
    console_export: bool = False,
) -> trace.Tracer:
    """
    Install a tracer provider exporting engine spans.

    Args:
        service_name: Name of the service for tracing
        otlp_endpoint: OTLP collector endpoint (e.g., "http://localhost:4317")
        console_export: Also print finished spans (for debugging)

    Returns:
        The engine tracer
    """
    global _tracer

    from dualdb import __version__

    provider = TracerProvider(
        resource=Resource.create({"service.name": service_name, "service.version": __version__})
    )
    exporters = []
    if otlp_endpoint:
        exporters.append(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
    if console_export:
        exporters.append(ConsoleSpanExporter())
    for exporter in exporters:
        provider.add_span_processor(BatchSpanProcessor(exporter))

    trace.set_tracer_provider(provider)
    _tracer = trace.get_tracer(service_name)
    return _tracer


def setup_tracing_from_config(config: ObservabilityConfig) -> trace.Tracer | None:
    """Install tracing when a collector endpoint is configured."""
    if not config.otel_endpoint:
        return None
    return setup_tracing(service_name=config.otel_service_name, otlp_endpoint=config.otel_endpoint)


def get_tracer() -> trace.Tracer:
    """Get the engine tracer (a no-op tracer until tracing is set up)."""
    global _tracer
    if _tracer is None:
        _tracer = trace.get_tracer("dualdb")
    return _tracer


def span_attribute(value: Any) -> str | bool | int | float:
    """Coerce a value into something a span attribute can carry."""
    if isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return str(value)


@contextmanager
def operation_span(operation: str, **attributes: Any) -> Generator[trace.Span, None, None]:
    """
    Trace one engine operation.

    Args:
        operation: Engine method name (e.g. 'find')
        **attributes: Call details, stored as ``dualdb.<key>`` attributes

    Yields:
        The active span
    """
    with get_tracer().start_as_current_span(
        f"{ATTRIBUTE_PREFIX}{operation}",
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        span.set_attribute(f"{ATTRIBUTE_PREFIX}operation", operation)
        for key, value in attributes.items():
            span.set_attribute(f"{ATTRIBUTE_PREFIX}{key}", span_attribute(value))
        try:
            yield span
        except Exception as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, type(e).__name__))
            raise
