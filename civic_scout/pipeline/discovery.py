"""
Source discovery, run mid-run and again at run end.

Two strategies:
- signal references: pages cited by stored signals that no source covers
  yet are promoted to web sources
- topics: expansion topics and configured seed topics are searched on
  social platforms and productive authors become sources

Both are bounded by the run's DiscoveryBudget. Hitting a cap ends the
strategy for the rest of the run without raising.
"""

from collections.abc import Callable
from datetime import datetime, timezone

import structlog

from civic_scout.graph.base import GraphReader, GraphWriter
from civic_scout.observability.metrics import ScoutMetrics, get_metrics
from civic_scout.pipeline.config import ScoutConfig
from civic_scout.pipeline.context import RunContext
from civic_scout.pipeline.scrape_phase import ScrapePhase
from civic_scout.signals.schemas import SignalReference
from civic_scout.sources.config import SourcesConfig
from civic_scout.sources.schemas import DiscoveryMethod, Source, SourceKind, SourceRole
from civic_scout.sources.urls import is_social_url, normalize_query

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Discovery:
    """
    Finds new sources for the current and future runs.

    Usage:
        discovery = Discovery(reader, writer, scrape, config)
        created = await discovery.run(ctx, stage="mid")
    """

    def __init__(
        self,
        reader: GraphReader,
        writer: GraphWriter,
        scrape: ScrapePhase,
        config: ScoutConfig | None = None,
        sources_config: SourcesConfig | None = None,
        metrics: ScoutMetrics | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._scrape = scrape
        self._config = config or ScoutConfig()
        self._sources_config = sources_config or SourcesConfig()
        self._metrics = metrics or get_metrics()
        self._clock = clock

    async def run(self, ctx: RunContext, stage: str = "mid") -> list[Source]:
        """Run both strategies. Returns sources created this call."""
        created = await self.promote_references(ctx)
        if self._scrape.cancelled:
            return created
        created.extend(await self.discover_topics(ctx))
        logger.info(
            "Discovery finished",
            stage=stage,
            created=len(created),
            searches_used=ctx.budget.searches_used,
            sources_created=ctx.budget.sources_created,
        )
        return created

    def topics(self, ctx: RunContext) -> list[str]:
        """Expansion topics first, then seed topics, without repeats."""
        seen: set[str] = set()
        topics = []
        for topic in [*ctx.social_topics, *self._config.seed_topics]:
            norm = normalize_query(topic).lstrip("#")
            if norm and norm not in seen:
                seen.add(norm)
                topics.append(norm)
        return topics

    async def discover_topics(self, ctx: RunContext) -> list[Source]:
        topics = self.topics(ctx)
        if not topics:
            return []
        return await self._scrape.discover_from_topics(topics, ctx)

    async def promote_references(self, ctx: RunContext) -> list[Source]:
        """Turn pages cited by stored signals into web sources.

        References are read a page at a time, ordered by URL, until enough
        eligible ones are promoted or the store runs out, so references
        skipped here never crowd out the ones sorted after them.
        """
        limit = self._config.max_reference_promotions
        if limit == 0 or ctx.budget.sources_exhausted:
            return []

        page_size = limit * 4
        weight = self._sources_config.initial_weight_for(DiscoveryMethod.SIGNAL_REFERENCE)
        created: list[Source] = []
        after: str | None = None

        while len(created) < limit and not ctx.budget.sources_exhausted:
            try:
                references = await self._reader.unresolved_signal_references(
                    ctx.city, page_size, after=after
                )
            except Exception as e:
                ctx.stats.phase_errors += 1
                logger.error("Failed to load signal references", error=str(e))
                break

            for ref in references:
                if len(created) >= limit or ctx.budget.sources_exhausted:
                    break
                source = await self._promote(ref, weight, ctx)
                if source is not None:
                    created.append(source)

            if len(references) < page_size:
                break
            after = references[-1].url
        return created

    async def _promote(
        self, ref: SignalReference, weight: float, ctx: RunContext
    ) -> Source | None:
        # Social URLs are tracked as accounts by topic discovery
        if not ref.url.startswith("http") or is_social_url(ref.url):
            return None
        if ctx.resolve_url(ref.url):
            return None

        source = Source.create(
            ctx.city,
            SourceKind.WEB,
            ref.url,
            role=SourceRole.MIXED,
            discovery_method=DiscoveryMethod.SIGNAL_REFERENCE,
            weight=weight,
            gap_context=f"referenced by {ref.signal_id}",
            created_at=self._clock(),
        )
        if source.canonical_key in ctx.known_source_keys:
            return None

        try:
            inserted = await self._writer.upsert_source(source)
        except Exception as e:
            logger.error("Failed to create referenced source", url=ref.url, error=str(e))
            return None
        ctx.register_source(source)
        if not inserted:
            return None

        ctx.budget.take_source()
        ctx.stats.reference_sources_created += 1
        self._metrics.record_source_created(ctx.city, DiscoveryMethod.SIGNAL_REFERENCE.value)
        logger.info("Promoted signal reference", source=source.canonical_key)
        return source
