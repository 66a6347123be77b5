"""Unit tests for tracing and logging helpers."""

from __future__ import annotations

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from dualdb.application import StorageEngine
from dualdb.domain.errors import UnknownCollection
from dualdb.infrastructure import tracing
from dualdb.infrastructure.config import Config, ObservabilityConfig
from dualdb.infrastructure.logging import add_trace_context, build_processors
from dualdb.infrastructure.metrics import MetricsRegistry


@pytest.fixture
def spans(monkeypatch: pytest.MonkeyPatch) -> InMemorySpanExporter:
    """Route engine spans to an in-memory exporter."""
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    monkeypatch.setattr(tracing, "_tracer", provider.get_tracer("test"))
    return exporter


@pytest.mark.unit
class TestTracing:
    """Tests for operation spans."""

    def test_span_attributes(self, spans: InMemorySpanExporter) -> None:
        """Attributes are prefixed and coerced."""
        with tracing.operation_span("find", collection="users", fields=("a", "b"), limit=None):
            pass
        (span,) = spans.get_finished_spans()
        assert span.name == "dualdb.find"
        assert span.attributes["dualdb.operation"] == "find"
        assert span.attributes["dualdb.collection"] == "users"
        assert span.attributes["dualdb.fields"] == "a,b"
        assert span.attributes["dualdb.limit"] == "None"

    def test_failed_operation_marks_span(
        self,
        spans: InMemorySpanExporter,
        test_config: Config,
        metrics_registry: MetricsRegistry,
    ) -> None:
        """Engine errors set an error status on the operation span."""
        with StorageEngine(config=test_config, metrics=metrics_registry) as db:
            with pytest.raises(UnknownCollection):
                db.find("missing")
        (span,) = spans.get_finished_spans()
        assert span.status.status_code == StatusCode.ERROR
        assert span.events[0].name == "exception"

    def test_no_endpoint_no_tracing(self) -> None:
        """Tracing stays off without a collector endpoint."""
        assert tracing.setup_tracing_from_config(ObservabilityConfig()) is None


@pytest.mark.unit
class TestLogging:
    """Tests for the logging processor chain."""

    def test_renderer_follows_format(self) -> None:
        """JSON output ends the chain with the JSON renderer."""
        assert type(build_processors("json")[-1]).__name__ == "JSONRenderer"
        assert type(build_processors("console")[-1]).__name__ == "ConsoleRenderer"

    def test_trace_context(self, spans: InMemorySpanExporter) -> None:
        """Events inside a span carry its identifiers."""
        assert add_trace_context(None, "info", {"event": "x"}) == {"event": "x"}
        with tracing.operation_span("count"):
            event = add_trace_context(None, "info", {"event": "x"})
        assert len(event["trace_id"]) == 32
        assert len(event["span_id"]) == 16
