"""
Run-scoped state threaded through the scout phases.

One RunContext exists per run. Phases receive it explicitly; parallel
fetch workers never see it, they hand results back to the phase which
applies them one at a time.
"""

import uuid
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

from civic_scout.similarity.cache import SimilarityCache
from civic_scout.sources.schemas import Source
from civic_scout.sources.urls import normalize_query, sanitize_url


@dataclass
class RunStats:
    """Counters accumulated over one run."""

    urls_scraped: int = 0
    urls_unchanged: int = 0
    urls_failed: int = 0
    query_errors: int = 0
    social_accounts_scraped: int = 0
    social_posts: int = 0
    extraction_failures: int = 0
    signals_extracted: int = 0
    signals_stored: int = 0
    signals_deduplicated: int = 0
    signals_corroborated: int = 0
    signals_refreshed: int = 0
    signals_flagged: int = 0
    signals_filtered: int = 0
    store_failures: int = 0
    embedding_failures: int = 0
    embedding_dimension_mismatches: int = 0
    discovery_searches: int = 0
    discovery_posts_found: int = 0
    discovery_sources_created: int = 0
    reference_sources_created: int = 0
    expansion_queries_collected: int = 0
    expansion_sources_created: int = 0
    sources_planned: int = 0
    sources_paused: int = 0
    sources_explored: int = 0
    weights_updated: int = 0
    sources_deactivated: int = 0
    signals_reaped: int = 0
    phase_errors: int = 0
    budget_exhausted: bool = False
    cancelled: bool = False
    by_kind: Counter = field(default_factory=Counter)
    fetch_errors_by_type: Counter = field(default_factory=Counter)
    states: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["by_kind"] = dict(self.by_kind)
        data["fetch_errors_by_type"] = dict(self.fetch_errors_by_type)
        return data

    def summary(self) -> str:
        """Human-readable run report."""
        lines = [
            "=== Scout Run Complete ===" if not self.cancelled else "=== Scout Run Cancelled ===",
            f"URLs scraped:         {self.urls_scraped}",
            f"URLs unchanged:       {self.urls_unchanged}",
            f"URLs failed:          {self.urls_failed}",
            f"Query errors:         {self.query_errors}",
            f"Social posts:         {self.social_posts}",
            f"Signals extracted:    {self.signals_extracted}",
            f"Signals stored:       {self.signals_stored}",
            f"  flagged near-dup:   {self.signals_flagged}",
            f"Duplicates skipped:   {self.signals_deduplicated}",
            f"  corroborated:       {self.signals_corroborated}",
            f"  refreshed:          {self.signals_refreshed}",
            f"Store failures:       {self.store_failures}",
            f"Filtered (geo):       {self.signals_filtered}",
            f"Discovery searches:   {self.discovery_searches}",
            f"Sources discovered:   {self.discovery_sources_created + self.reference_sources_created}",
            f"Expansion queries:    {self.expansion_queries_collected}",
            f"Expansion sources:    {self.expansion_sources_created}",
            f"Weights updated:      {self.weights_updated}",
            f"Sources deactivated:  {self.sources_deactivated}",
            f"Signals reaped:       {self.signals_reaped}",
        ]
        if self.by_kind:
            lines.append("By kind:")
            for kind, count in sorted(self.by_kind.items()):
                lines.append(f"  {kind:<20}{count}")
        if self.fetch_errors_by_type:
            lines.append("Fetch errors:")
            for error_type, count in sorted(self.fetch_errors_by_type.items()):
                lines.append(f"  {error_type:<20}{count}")
        return "\n".join(lines)


@dataclass
class DiscoveryBudget:
    """Per-run caps on discovery searches and newly created sources.

    Hitting a cap is not an error: ``take_*`` returns False and the
    caller stops that sub-step for the rest of the run.
    """

    max_searches: int
    max_new_sources: int
    searches_used: int = 0
    sources_created: int = 0

    def take_search(self) -> bool:
        if self.searches_used >= self.max_searches:
            return False
        self.searches_used += 1
        return True

    def take_source(self) -> bool:
        if self.sources_created >= self.max_new_sources:
            return False
        self.sources_created += 1
        return True

    @property
    def sources_exhausted(self) -> bool:
        return self.sources_created >= self.max_new_sources


@dataclass
class RunContext:
    """Mutable unit-of-work state for one scout run.

    - url_to_canonical_key: sanitized URL -> source key, grows as fetches
      resolve redirects
    - source_signal_counts: source key -> signals stored this run; a key
      is present once the source was fetched successfully, even at zero
    - query_errors / failed_sources: keys whose fetch failed this run
    """

    city: str
    similarity: SimilarityCache
    budget: DiscoveryBudget
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    url_to_canonical_key: dict[str, str] = field(default_factory=dict)
    source_signal_counts: dict[str, int] = field(default_factory=dict)
    expansion_queries: list[str] = field(default_factory=list)
    social_topics: list[str] = field(default_factory=list)
    query_errors: set[str] = field(default_factory=set)
    failed_sources: set[str] = field(default_factory=set)
    known_source_keys: set[str] = field(default_factory=set)
    seen_content_hashes: set[str] = field(default_factory=set)
    stats: RunStats = field(default_factory=RunStats)

    def register_sources(self, sources: list[Source]) -> None:
        for source in sources:
            self.register_source(source)

    def register_source(self, source: Source) -> None:
        self.known_source_keys.add(source.canonical_key)
        if source.url:
            self.url_to_canonical_key.setdefault(sanitize_url(source.url), source.canonical_key)

    def known_urls(self) -> frozenset[str]:
        """Snapshot of every URL currently attributed to a city source."""
        return frozenset(self.url_to_canonical_key)

    def resolve_url(self, url: str) -> str | None:
        return self.url_to_canonical_key.get(sanitize_url(url))

    def record_alias(self, url: str, canonical_key: str) -> bool:
        """Map a resolved URL to a source key. True if the mapping is new."""
        clean = sanitize_url(url)
        if clean in self.url_to_canonical_key:
            return False
        self.url_to_canonical_key[clean] = canonical_key
        return True

    def record_attempt(self, canonical_key: str) -> None:
        self.source_signal_counts.setdefault(canonical_key, 0)

    def record_signal(self, canonical_key: str) -> None:
        self.source_signal_counts[canonical_key] = (
            self.source_signal_counts.get(canonical_key, 0) + 1
        )

    def record_failure(self, canonical_key: str, *, query_layer: bool = False) -> None:
        if query_layer:
            self.query_errors.add(canonical_key)
        else:
            self.failed_sources.add(canonical_key)

    def add_expansion_queries(self, queries: list[str]) -> int:
        """Queue implied queries, ignoring exact repeats. Returns number added."""
        existing = {normalize_query(q) for q in self.expansion_queries}
        added = 0
        for query in queries:
            norm = normalize_query(query)
            if norm and norm not in existing:
                self.expansion_queries.append(query.strip())
                existing.add(norm)
                added += 1
        return added
