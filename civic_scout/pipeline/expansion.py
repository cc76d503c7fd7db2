"""
Query expansion: turn implied follow-up queries into new query sources.

Candidates come from two places, the implied queries collected during
this run and those attached to signals that gained actor links recently.
Short query strings are compared by token-set Jaccard similarity rather
than embeddings.
"""

import re
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import structlog

from civic_scout.graph.base import GraphReader, GraphWriter
from civic_scout.observability.metrics import ScoutMetrics, get_metrics
from civic_scout.pipeline.config import ScoutConfig
from civic_scout.pipeline.context import RunContext
from civic_scout.sources.config import SourcesConfig
from civic_scout.sources.schemas import DiscoveryMethod, Source, SourceKind, SourceRole
from civic_scout.sources.urls import canonical_key, normalize_query

logger = structlog.get_logger(__name__)

_TOKEN = re.compile(r"[a-z0-9]+")


def tokenize(text: str) -> frozenset[str]:
    return frozenset(_TOKEN.findall(text.lower()))


def jaccard_similarity(a: str, b: str) -> float:
    """Shared tokens over all tokens; 0.0 when both are empty."""
    ta, tb = tokenize(a), tokenize(b)
    union = ta | tb
    if not union:
        return 0.0
    return len(ta & tb) / len(union)


def dedupe_queries(
    candidates: list[str],
    existing: list[str],
    threshold: float,
    limit: int,
) -> list[str]:
    """Keep candidates not within ``threshold`` of each other or of ``existing``.

    Order is preserved; at most ``limit`` survivors are returned.
    """
    kept: list[str] = []
    compared = [normalize_query(q) for q in existing]
    for candidate in candidates:
        if len(kept) >= limit:
            break
        norm = normalize_query(candidate)
        if not tokenize(norm):
            continue
        if any(jaccard_similarity(norm, other) >= threshold for other in compared):
            continue
        kept.append(norm)
        compared.append(norm)
    return kept


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Expansion:
    def __init__(
        self,
        reader: GraphReader,
        writer: GraphWriter,
        config: ScoutConfig | None = None,
        sources_config: SourcesConfig | None = None,
        metrics: ScoutMetrics | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._config = config or ScoutConfig()
        self._sources_config = sources_config or SourcesConfig()
        self._metrics = metrics or get_metrics()
        self._clock = clock

    async def collect_candidates(self, ctx: RunContext) -> list[str]:
        candidates = list(ctx.expansion_queries)
        since = ctx.started_at - timedelta(hours=self._config.expansion_lookback_hours)
        try:
            linked = await self._reader.recently_linked_signals(ctx.city, since)
        except Exception as e:
            ctx.stats.phase_errors += 1
            logger.warning("Failed to load recently linked signals", error=str(e))
            linked = []
        for signal in linked:
            candidates.extend(signal.implied_queries)
        return candidates

    async def run(self, ctx: RunContext, existing_sources: list[Source]) -> list[Source]:
        """Create query sources from this run's implied queries.

        The first few survivors are also queued as social topics for end
        discovery.
        """
        candidates = await self.collect_candidates(ctx)
        if not candidates:
            return []

        existing = [s.value for s in existing_sources if s.kind == SourceKind.QUERY]
        survivors = dedupe_queries(
            candidates,
            existing,
            self._config.expansion_similarity_threshold,
            self._config.max_expansion_queries_per_run,
        )

        weight = self._sources_config.initial_weight_for(DiscoveryMethod.SIGNAL_EXPANSION)
        created: list[Source] = []
        for query in survivors:
            key = canonical_key(ctx.city, SourceKind.QUERY.value, query)
            if key in ctx.known_source_keys:
                continue
            source = Source.create(
                ctx.city,
                SourceKind.QUERY,
                query,
                role=SourceRole.RESPONSE,
                discovery_method=DiscoveryMethod.SIGNAL_EXPANSION,
                weight=weight,
                gap_context=f"expansion:{query}",
                created_at=self._clock(),
            )
            try:
                inserted = await self._writer.upsert_source(source)
            except Exception as e:
                logger.error("Failed to create expansion source", query=query, error=str(e))
                continue
            ctx.register_source(source)
            if inserted:
                created.append(source)
                ctx.stats.expansion_sources_created += 1
                self._metrics.record_source_created(
                    ctx.city, DiscoveryMethod.SIGNAL_EXPANSION.value
                )

        for query in survivors[: self._config.max_social_topics_from_expansion]:
            if query not in ctx.social_topics:
                ctx.social_topics.append(query)

        logger.info(
            "Expansion finished",
            candidates=len(candidates),
            survivors=len(survivors),
            created=len(created),
        )
        return created
