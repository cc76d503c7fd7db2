"""
Prometheus metrics for monitoring scout runs.

Defines and exposes metrics for:
- Run outcomes and phase latency
- Signals stored and duplicates suppressed
- Fetch failures by type
- Source lifecycle (created, deactivated)

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from civic_scout.config.settings import get_settings

logger = logging.getLogger(__name__)

# Phases are dominated by network and LLM calls, so buckets reach minutes
PHASE_BUCKETS = (0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0)


class ScoutMetrics:
    """
    Prometheus metrics collector for the scout pipeline.

    Usage:
        metrics = get_metrics()
        metrics.start_server()
        metrics.record_signal_stored(city="minneapolis", kind="event")
    """

    def __init__(self):
        self.runs_total = Counter(
            "civic_scout_runs_total",
            "Total scout runs by outcome",
            ["city", "outcome"],  # completed, cancelled, locked, failed
        )

        self.phase_latency = Histogram(
            "civic_scout_phase_latency_seconds",
            "Time spent in each run phase",
            ["phase"],
            buckets=PHASE_BUCKETS,
        )

        self.signals_stored = Counter(
            "civic_scout_signals_stored_total",
            "Signals persisted to the graph",
            ["city", "kind"],
        )

        self.duplicates = Counter(
            "civic_scout_duplicates_total",
            "Candidates caught by deduplication",
            ["city", "layer"],  # content_hash, title, embedding
        )

        self.near_duplicates_flagged = Counter(
            "civic_scout_near_duplicates_flagged_total",
            "Signals stored but flagged as possible near-duplicates",
            ["city"],
        )

        self.fetch_errors = Counter(
            "civic_scout_fetch_errors_total",
            "Fetch failures by error type",
            ["city", "error_type"],
        )

        self.sources_created = Counter(
            "civic_scout_sources_created_total",
            "Sources created by discovery or expansion",
            ["city", "method"],
        )

        self.sources_deactivated = Counter(
            "civic_scout_sources_deactivated_total",
            "Sources deactivated by the metrics update",
            ["city"],
        )

        self.last_run_timestamp = Gauge(
            "civic_scout_last_run_timestamp_seconds",
            "Unix timestamp of the last completed run",
            ["city"],
        )

        logger.info("Prometheus metrics initialized")

    def start_server(self, port: int | None = None) -> None:
        """Start Prometheus metrics HTTP server."""
        settings = get_settings()
        port = port or settings.metrics_port

        start_http_server(port, registry=REGISTRY)
        logger.info("Prometheus metrics server started on port %d", port)

    def record_run(self, city: str, outcome: str, finished_at: float | None = None) -> None:
        """Record a run outcome; completed runs also stamp the last-run gauge."""
        self.runs_total.labels(city=city, outcome=outcome).inc()
        if finished_at is not None:
            self.last_run_timestamp.labels(city=city).set(finished_at)

    def record_phase_latency(self, phase: str, latency: float) -> None:
        self.phase_latency.labels(phase=phase).observe(latency)

    def record_signal_stored(self, city: str, kind: str, flagged: bool = False) -> None:
        self.signals_stored.labels(city=city, kind=kind).inc()
        if flagged:
            self.near_duplicates_flagged.labels(city=city).inc()

    def record_duplicate(self, city: str, layer: str) -> None:
        self.duplicates.labels(city=city, layer=layer).inc()

    def record_fetch_error(self, city: str, error_type: str) -> None:
        self.fetch_errors.labels(city=city, error_type=error_type).inc()

    def record_source_created(self, city: str, method: str) -> None:
        self.sources_created.labels(city=city, method=method).inc()

    def record_deactivation(self, city: str, count: int = 1) -> None:
        if count > 0:
            self.sources_deactivated.labels(city=city).inc(count)


# Global metrics instance
_metrics: ScoutMetrics | None = None


def get_metrics() -> ScoutMetrics:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = ScoutMetrics()
    return _metrics
