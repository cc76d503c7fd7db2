"""
Scout orchestrator: one run for one city.

States run strictly in order:

    REAPING → LOADING → PROBLEM_PHASE → MID_DISCOVERY → RESPONSE_PHASE →
    METRICS_UPDATE → SYNTHESIS → EXPANSION → END_DISCOVERY → DONE

Only setup failures (lock held, sources unavailable) raise. Every other
failure is contained in its phase and counted in RunStats. Cancellation
is checked between phases and before each fetch; a cancelled run skips
straight to DONE and releases the lock.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Protocol

import structlog

from civic_scout.coordination.lock import LockStore, ScoutLockManager
from civic_scout.embedding.base import Embedder
from civic_scout.extraction.base import Extractor
from civic_scout.fetch.base import SocialFetcher, WebFetcher
from civic_scout.observability.logging import bind_context, clear_context
from civic_scout.observability.metrics import ScoutMetrics, get_metrics
from civic_scout.observability.tracing import phase_span
from civic_scout.pipeline.budget import BudgetTracker
from civic_scout.pipeline.config import ScoutConfig
from civic_scout.pipeline.context import DiscoveryBudget, RunContext, RunStats
from civic_scout.pipeline.discovery import Discovery
from civic_scout.pipeline.errors import ScoutAlreadyRunningError, SetupError
from civic_scout.pipeline.expansion import Expansion
from civic_scout.pipeline.scheduler import Scheduler, ScrapePlan
from civic_scout.pipeline.scrape_phase import ScrapePhase
from civic_scout.pipeline.source_metrics import SourceMetrics
from civic_scout.similarity.cache import SimilarityCache
from civic_scout.similarity.config import SimilarityConfig
from civic_scout.sources.config import SourcesConfig
from civic_scout.sources.schemas import Source, SourceKind

logger = structlog.get_logger(__name__)


class RunState(str, Enum):
    REAPING = "reaping"
    LOADING = "loading"
    PROBLEM_PHASE = "problem_phase"
    MID_DISCOVERY = "mid_discovery"
    RESPONSE_PHASE = "response_phase"
    METRICS_UPDATE = "metrics_update"
    SYNTHESIS = "synthesis"
    EXPANSION = "expansion"
    END_DISCOVERY = "end_discovery"
    DONE = "done"


class Synthesizer(Protocol):
    """Downstream story building, run after the metrics update."""

    async def synthesize(self, ctx: RunContext) -> None: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Orchestrator:
    """
    Sequences the phases of a scout run.

    Args:
        city: City scope of the run.
        store: Graph reader and writer, including the lock calls.
        extractor: Text → signal candidates.
        embedder: Embedding backend for the similarity cache.
        web: Page, search and feed fetcher.
        social: Social fetcher, or None to skip social sources and
            topic discovery.
        synthesizer: Optional story-building step.

    Usage:
        orchestrator = Orchestrator("minneapolis", store, extractor, embedder, web)
        stats = await orchestrator.run()
        print(stats.summary())
    """

    def __init__(
        self,
        city: str,
        store: LockStore,
        extractor: Extractor,
        embedder: Embedder,
        web: WebFetcher,
        social: SocialFetcher | None = None,
        config: ScoutConfig | None = None,
        sources_config: SourcesConfig | None = None,
        similarity_config: SimilarityConfig | None = None,
        budget: BudgetTracker | None = None,
        synthesizer: Synthesizer | None = None,
        metrics: ScoutMetrics | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.city = city
        self._store = store
        self._embedder = embedder
        self._config = config or ScoutConfig()
        self._sources_config = sources_config or SourcesConfig()
        self._similarity_config = similarity_config or SimilarityConfig()
        self._synthesizer = synthesizer
        self._metrics = metrics or get_metrics()
        self._clock = clock
        self._cancel = asyncio.Event()

        budget = budget or BudgetTracker.from_config(self._config)
        self._locks = ScoutLockManager(
            store,
            stale_after=timedelta(minutes=self._config.lock_stale_minutes),
            clock=clock,
        )
        self._scheduler = Scheduler(self._config)
        self._scrape = ScrapePhase(
            store,
            extractor,
            web,
            social,
            config=self._config,
            sources_config=self._sources_config,
            budget=budget,
            cancel=self._cancel,
            metrics=self._metrics,
            clock=clock,
        )
        self._discovery = Discovery(
            store,
            store,
            self._scrape,
            self._config,
            self._sources_config,
            metrics=self._metrics,
            clock=clock,
        )
        self._expansion = Expansion(
            store,
            store,
            self._config,
            self._sources_config,
            metrics=self._metrics,
            clock=clock,
        )
        self._source_metrics = SourceMetrics(
            store,
            self._config,
            self._sources_config,
            metrics=self._metrics,
            clock=clock,
        )

    def cancel(self) -> None:
        """Stop issuing fetches; the run finishes in-flight work and returns."""
        if not self._cancel.is_set():
            logger.info("Cancellation requested", city=self.city)
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    async def run(self) -> RunStats:
        """Execute one run.

        Raises:
            ScoutAlreadyRunningError: a non-stale lock is held for the city.
            SetupError: the city's sources could not be loaded.
        """
        ctx = RunContext(
            city=self.city,
            similarity=SimilarityCache(self._embedder, self._similarity_config),
            budget=DiscoveryBudget(
                max_searches=self._config.max_discovery_searches,
                max_new_sources=self._config.max_new_sources_per_run,
            ),
            started_at=self._clock(),
        )

        if not await self._locks.acquire(self.city, ctx.run_id):
            self._metrics.record_run(self.city, "locked")
            logger.warning("Scout already running, skipping", city=self.city)
            raise ScoutAlreadyRunningError(
                f"A scout run already holds the lock for {self.city}", city=self.city
            )

        bind_context(city=self.city, run_id=ctx.run_id)
        try:
            await self._run_phases(ctx)
        except SetupError:
            self._metrics.record_run(self.city, "failed")
            raise
        finally:
            try:
                await self._locks.release(self.city, ctx.run_id)
            except Exception as e:
                logger.error("Failed to release scout lock", error=str(e))
            clear_context()

        outcome = "cancelled" if ctx.stats.cancelled else "completed"
        self._metrics.record_run(self.city, outcome, finished_at=time.time())
        logger.info("Scout run finished", outcome=outcome, **_headline(ctx.stats))
        return ctx.stats

    async def _run_phases(self, ctx: RunContext) -> None:
        await self._phase(ctx, RunState.REAPING, lambda: self._reap(ctx))

        ctx.stats.states.append(RunState.LOADING.value)
        with phase_span(RunState.LOADING.value, self.city):
            sources, plan = await self._load(ctx)

        discovered: list[Source] = []

        async def problem_phase() -> None:
            await self._scrape.run_web(plan.tension_phase, ctx)
            await self._scrape.run_social(plan.tension_phase, ctx)

        async def mid_discovery() -> None:
            discovered.extend(await self._discovery.run(ctx, stage="mid"))

        async def response_phase() -> None:
            # Discovered social accounts were scraped while being discovered
            extra = [s for s in discovered if s.kind != SourceKind.SOCIAL]
            await self._scrape.run_web(plan.response_phase + extra, ctx)
            await self._scrape.run_social(plan.response_phase, ctx)

        async def metrics_update() -> None:
            await self._source_metrics.update(sources + discovered, ctx)

        async def synthesis() -> None:
            if self._synthesizer is not None:
                await self._synthesizer.synthesize(ctx)

        async def expansion() -> None:
            await self._expansion.run(ctx, sources + discovered)

        async def end_discovery() -> None:
            await self._discovery.run(ctx, stage="end")

        phases: list[tuple[RunState, Callable[[], Awaitable[None]]]] = [
            (RunState.PROBLEM_PHASE, problem_phase),
            (RunState.MID_DISCOVERY, mid_discovery),
            (RunState.RESPONSE_PHASE, response_phase),
            (RunState.METRICS_UPDATE, metrics_update),
            (RunState.SYNTHESIS, synthesis),
            (RunState.EXPANSION, expansion),
            (RunState.END_DISCOVERY, end_discovery),
        ]
        for state, work in phases:
            if self.cancelled:
                ctx.stats.cancelled = True
                logger.info("Run cancelled, skipping remaining phases", next_state=state.value)
                break
            await self._phase(ctx, state, work)

        ctx.stats.states.append(RunState.DONE.value)

    async def _phase(
        self,
        ctx: RunContext,
        state: RunState,
        work: Callable[[], Awaitable[None]],
    ) -> None:
        """Run one phase, containing and counting any failure."""
        ctx.stats.states.append(state.value)
        start = time.perf_counter()
        try:
            with phase_span(state.value, self.city) as span:
                stored_before = ctx.stats.signals_stored
                await work()
                span.set_attribute(
                    "scout.signals_stored", ctx.stats.signals_stored - stored_before
                )
        except Exception as e:
            ctx.stats.phase_errors += 1
            logger.error("Phase failed", phase=state.value, error=str(e), exc_info=True)
        finally:
            self._metrics.record_phase_latency(state.value, time.perf_counter() - start)

    async def _reap(self, ctx: RunContext) -> None:
        result = await self._store.reap_expired_signals(self.city, self._clock())
        ctx.stats.signals_reaped = result.signals_reaped
        if result.signals_reaped:
            logger.info(
                "Reaped expired signals",
                signals=result.signals_reaped,
                actors_orphaned=result.actors_orphaned,
            )

    async def _load(self, ctx: RunContext) -> tuple[list[Source], ScrapePlan]:
        try:
            sources = await self._store.get_active_sources(self.city)
        except Exception as e:
            raise SetupError(f"Could not load sources for {self.city}: {e}", city=self.city) from e

        ctx.register_sources(sources)
        try:
            ctx.known_source_keys |= await self._store.get_source_keys(self.city)
        except Exception as e:
            ctx.stats.phase_errors += 1
            logger.warning("Failed to load source keys", error=str(e))

        since = ctx.started_at - timedelta(days=self._similarity_config.window_days)
        try:
            loaded = ctx.similarity.load(await self._store.recent_signals(self.city, since))
        except Exception as e:
            ctx.stats.phase_errors += 1
            loaded = 0
            logger.warning("Failed to seed similarity cache", error=str(e))

        plan = self._scheduler.plan(sources, self._clock())
        ctx.stats.sources_planned = plan.planned
        ctx.stats.sources_paused = len(plan.paused)
        ctx.stats.sources_explored = len(plan.explored)
        logger.info(
            "Sources loaded",
            active=len(sources),
            planned=plan.planned,
            cached_embeddings=loaded,
        )
        return sources, plan


def _headline(stats: RunStats) -> dict[str, int]:
    return {
        "signals_stored": stats.signals_stored,
        "signals_flagged": stats.signals_flagged,
        "duplicates": stats.signals_deduplicated,
        "urls_scraped": stats.urls_scraped,
        "urls_failed": stats.urls_failed,
        "phase_errors": stats.phase_errors,
    }
