"""
OpenTelemetry spans for scout run phases.

Every orchestrator phase runs inside a ``scout.<phase>`` span tagged with
the city, so a slow or failing phase is visible per city in Jaeger/Tempo.
Until ``setup_tracing`` runs, the OTel API hands out no-op spans and
``phase_span`` costs next to nothing.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SimpleSpanProcessor,
    SpanExporter,
)
from opentelemetry.trace import Span, StatusCode
from opentelemetry.trace.propagation import get_current_span

logger = logging.getLogger(__name__)

TRACER_NAME = "civic_scout.pipeline"

_tracing_enabled = False


def setup_tracing(
    service_name: str,
    otlp_endpoint: str | None = None,
    *,
    exporter: SpanExporter | None = None,
) -> TracerProvider:
    """
    Install the global TracerProvider.

    Spans go to an OTLP gRPC collector by default. Tests pass an
    ``InMemorySpanExporter``, which is flushed synchronously.
    """
    global _tracing_enabled

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    if exporter is None:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )

        endpoint = otlp_endpoint or "http://localhost:4317"
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True))
        )
    else:
        endpoint = "(in-process exporter)"
        provider.add_span_processor(SimpleSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    _tracing_enabled = True
    logger.info("Tracing scout runs as %s via %s", service_name, endpoint)
    return provider


def is_tracing_enabled() -> bool:
    return _tracing_enabled


@contextmanager
def phase_span(phase: str, city: str, **attributes: Any) -> Iterator[Span]:
    """
    Span for one run phase, named ``scout.<phase>``.

    Extra keyword attributes are recorded under the ``scout.`` prefix. An
    exception leaving the block marks the span failed and propagates.

    Usage:
        with phase_span("problem_phase", "minneapolis") as span:
            stored = await scrape.run_web(sources, ctx)
            span.set_attribute("scout.signals_stored", stored)
    """
    tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(
        f"scout.{phase}",
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        span.set_attribute("scout.city", city)
        for key, value in attributes.items():
            span.set_attribute(f"scout.{key}", value)
        try:
            yield span
        except Exception as exc:
            span.set_status(StatusCode.ERROR, str(exc))
            span.record_exception(exc)
            raise


def add_trace_context(
    logger_: Any, method: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Structlog processor: stamp log lines emitted inside a span with its ids."""
    ctx = get_current_span().get_span_context()
    if ctx.is_valid:
        event_dict["trace_id"] = f"{ctx.trace_id:032x}"
        event_dict["span_id"] = f"{ctx.span_id:016x}"
    return event_dict
