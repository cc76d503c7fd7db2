"""Observability layer - logging, metrics, and tracing."""

from civic_scout.observability.logging import setup_logging
from civic_scout.observability.metrics import ScoutMetrics, get_metrics
from civic_scout.observability.tracing import phase_span, setup_tracing

__all__ = [
    "setup_logging",
    "ScoutMetrics",
    "get_metrics",
    "setup_tracing",
    "phase_span",
]
