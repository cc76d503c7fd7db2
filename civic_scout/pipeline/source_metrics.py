"""
End-of-scrape source metrics: scrape bookkeeping, weight, cadence and
deactivation for every known source.

compute_source_update is pure: it reads a Source and the finished
RunContext and returns the values to write. SourceMetrics applies those
updates through the graph writer, one source at a time.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

from civic_scout.graph.base import GraphWriter
from civic_scout.observability.metrics import ScoutMetrics, get_metrics
from civic_scout.pipeline.config import ScoutConfig
from civic_scout.pipeline.context import RunContext
from civic_scout.pipeline.weights import cadence_with_backoff, compute_weight
from civic_scout.sources.config import SourcesConfig
from civic_scout.sources.schemas import Source, SourceKind

logger = structlog.get_logger(__name__)


@dataclass
class SourceUpdate:
    """What the metrics step writes for one source."""

    canonical_key: str
    weight: float
    cadence_hours: float
    attempted: bool = False
    failed: bool = False
    signals: int = 0
    scrape_count: int = 0
    consecutive_empty_runs: int = 0
    consecutive_failures: int = 0
    deactivate_reason: str | None = None


def deactivation_reason(
    source: Source,
    *,
    consecutive_empty_runs: int,
    signals_produced: int,
    config: ScoutConfig,
) -> str | None:
    """Why the source should be deactivated, or None. Curated sources never are."""
    if source.is_curated:
        return None
    if (
        source.kind == SourceKind.QUERY
        and signals_produced == 0
        and consecutive_empty_runs >= config.deactivate_query_after_empty_runs
    ):
        return "query_never_produced"
    if consecutive_empty_runs >= config.deactivate_after_empty_runs:
        return "consecutive_empty_runs"
    return None


def compute_source_update(
    source: Source,
    ctx: RunContext,
    now: datetime,
    config: ScoutConfig,
    sources_config: SourcesConfig,
) -> SourceUpdate:
    key = source.canonical_key
    failed = key in ctx.query_errors or key in ctx.failed_sources
    attempted = not failed and key in ctx.source_signal_counts

    signals = 0
    scrape_count = source.scrape_count
    signals_produced = source.signals_produced
    empty_runs = source.consecutive_empty_runs
    failures = source.consecutive_failures
    last_produced = source.last_produced_signal

    if failed:
        # A failed fetch says nothing about yield; only the backoff moves
        failures += 1
    elif attempted:
        signals = ctx.source_signal_counts[key]
        scrape_count += 1
        signals_produced += signals
        failures = 0
        if signals > 0:
            empty_runs = 0
            last_produced = now
        else:
            empty_runs += 1

    if scrape_count == 0:
        weight = source.weight
    else:
        weight = compute_weight(
            signals_produced=signals_produced,
            scrape_count=scrape_count,
            consecutive_empty_runs=empty_runs,
            last_produced_signal=last_produced,
            prior=sources_config.initial_weight_for(source.discovery_method),
            quality_penalty=source.quality_penalty,
            now=now,
            config=config,
        )

    return SourceUpdate(
        canonical_key=key,
        weight=weight,
        cadence_hours=cadence_with_backoff(weight, failures, config),
        attempted=attempted,
        failed=failed,
        signals=signals,
        scrape_count=scrape_count,
        consecutive_empty_runs=empty_runs,
        consecutive_failures=failures,
        deactivate_reason=deactivation_reason(
            source,
            consecutive_empty_runs=empty_runs,
            signals_produced=signals_produced,
            config=config,
        ),
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SourceMetrics:
    """
    Applies per-source updates after both scrape phases.

    Never fetches and never mutates the RunContext besides its stats.
    Each write is independent; a failing write is counted and the
    remaining sources are still updated.
    """

    def __init__(
        self,
        writer: GraphWriter,
        config: ScoutConfig | None = None,
        sources_config: SourcesConfig | None = None,
        metrics: ScoutMetrics | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._writer = writer
        self._config = config or ScoutConfig()
        self._sources_config = sources_config or SourcesConfig()
        self._metrics = metrics or get_metrics()
        self._clock = clock

    async def update(self, sources: list[Source], ctx: RunContext) -> list[SourceUpdate]:
        now = self._clock()
        updates = []
        deactivated = 0

        for source in sources:
            update = compute_source_update(source, ctx, now, self._config, self._sources_config)
            updates.append(update)
            try:
                if update.failed:
                    await self._writer.record_source_failure(update.canonical_key, now)
                elif update.attempted:
                    await self._writer.record_source_scrape(
                        update.canonical_key, update.signals, now
                    )
                await self._writer.set_source_weight(
                    update.canonical_key, update.weight, update.cadence_hours
                )
                ctx.stats.weights_updated += 1
                if update.deactivate_reason and source.active:
                    await self._writer.deactivate_source(
                        update.canonical_key, update.deactivate_reason
                    )
                    deactivated += 1
                    logger.info(
                        "Source deactivated",
                        source=update.canonical_key,
                        reason=update.deactivate_reason,
                        empty_runs=update.consecutive_empty_runs,
                    )
            except Exception as e:
                ctx.stats.phase_errors += 1
                logger.error(
                    "Failed to update source metrics",
                    source=update.canonical_key,
                    error=str(e),
                )

        ctx.stats.sources_deactivated += deactivated
        self._metrics.record_deactivation(ctx.city, deactivated)
        logger.info(
            "Source metrics updated",
            sources=len(sources),
            scraped=sum(1 for u in updates if u.attempted),
            failed=sum(1 for u in updates if u.failed),
            deactivated=deactivated,
        )
        return updates
