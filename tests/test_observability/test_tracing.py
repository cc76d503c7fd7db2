"""
Tests for OpenTelemetry tracing module.

Verifies:
- TracerProvider setup with InMemorySpanExporter
- phase_span() names, tags and fails spans
- Structlog processor adds trace_id/span_id to log entries
- Orchestrator phases each open a span
"""

import pytest
from opentelemetry import trace
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from civic_scout.extraction.base import MockExtractor
from civic_scout.fetch.mock import MockWebFetcher
from civic_scout.observability.tracing import (
    TRACER_NAME,
    add_trace_context,
    is_tracing_enabled,
    phase_span,
    setup_tracing,
)
from civic_scout.pipeline.orchestrator import Orchestrator
from tests.conftest import CITY

# OTel's global TracerProvider can only be set once per process, so the
# exporter is shared and cleared between tests.
_exporter = InMemorySpanExporter()
_provider = setup_tracing("test-service", exporter=_exporter)


@pytest.fixture(autouse=True)
def _clear_spans():
    _exporter.clear()
    yield
    _exporter.clear()


def _span(name: str):
    return next(s for s in _exporter.get_finished_spans() if s.name == name)


class TestSetupTracing:
    """Tests for setup_tracing()."""

    def test_setup_enables_tracing(self):
        assert is_tracing_enabled()


class TestPhaseSpan:
    """Tests for the phase_span() context manager."""

    def test_span_named_and_tagged(self):
        with phase_span("loading", CITY, sources=4):
            pass

        span = _span("scout.loading")
        assert span.attributes["scout.city"] == CITY
        assert span.attributes["scout.sources"] == 4
        assert span.status.status_code.name == "UNSET"

    def test_exception_marks_span_failed(self):
        with pytest.raises(ValueError, match="bad page"):
            with phase_span("problem_phase", CITY):
                raise ValueError("bad page")

        span = _span("scout.problem_phase")
        assert span.status.status_code.name == "ERROR"
        assert sum(1 for e in span.events if e.name == "exception") == 1


class TestAddTraceContext:
    """Tests for the structlog processor."""

    def test_adds_ids_inside_span(self):
        tracer = trace.get_tracer(TRACER_NAME)
        with tracer.start_as_current_span("op") as span:
            event = add_trace_context(None, "info", {"event": "hello"})
            ctx = span.get_span_context()

        assert event["trace_id"] == f"{ctx.trace_id:032x}"
        assert event["span_id"] == f"{ctx.span_id:016x}"

    def test_no_span_no_ids(self):
        event = add_trace_context(None, "info", {"event": "hello"})
        assert "trace_id" not in event


class TestOrchestratorSpans:
    """Each run phase is traced."""

    @pytest.mark.asyncio
    async def test_phase_spans(self, store, embedder, scout_config, metrics, clock, web_source):
        web = MockWebFetcher(pages={web_source.url: "notice: Road closure on Lake Street"})
        orchestrator = Orchestrator(
            CITY, store, MockExtractor(), embedder, web,
            config=scout_config, metrics=metrics, clock=clock,
        )

        await orchestrator.run()

        names = {span.name for span in _exporter.get_finished_spans()}
        assert {"scout.reaping", "scout.loading", "scout.problem_phase", "scout.end_discovery"} <= names
        assert _span("scout.problem_phase").attributes["scout.signals_stored"] == 1
        assert _span("scout.response_phase").attributes["scout.signals_stored"] == 0
