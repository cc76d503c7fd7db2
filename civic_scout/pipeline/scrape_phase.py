"""
One scraping pass: fetch → extract → dedup → persist.

Three entry points differ only in how content is acquired:
- run_web: pages, RSS feed items, and search-query result pages
- run_social: account timelines, grouped by platform
- discover_from_topics: topic/hashtag search that may create new sources

All of them funnel into store_signals. Fetching and extraction run in a
bounded worker pool; workers only return values, and the phase applies
results to the RunContext one at a time.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, TypeVar

import structlog

from civic_scout.extraction.base import Extractor
from civic_scout.fetch.base import SocialFetcher, WebFetcher
from civic_scout.fetch.errors import FetchError, QueryError
from civic_scout.fetch.schemas import FetchedPage, SocialFetchResult
from civic_scout.graph.base import GraphWriter
from civic_scout.observability.metrics import ScoutMetrics, get_metrics
from civic_scout.pipeline.budget import BudgetTracker, Operation
from civic_scout.pipeline.config import ScoutConfig
from civic_scout.pipeline.context import RunContext
from civic_scout.signals.schemas import (
    ExtractionResult,
    Signal,
    SignalCandidate,
    content_hash,
)
from civic_scout.similarity.cache import DedupDecision, DedupResult
from civic_scout.sources.config import SourcesConfig
from civic_scout.sources.schemas import DiscoveryMethod, Source, SourceKind, SourceRole
from civic_scout.sources.urls import canonical_key, normalize_handle, profile_url, sanitize_url

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class _Skipped:
    """Marker for work not started because the run was cancelled."""


SKIPPED = _Skipped()


@dataclass
class ContentItem:
    """Fetched text attributed to a source."""

    source: Source
    url: str
    text: str
    canonical_url: str | None = None


@dataclass
class _Extracted:
    item: ContentItem
    page_hash: str
    result: ExtractionResult


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _handle(source: Source) -> str:
    # Social source values are "platform/handle"
    return source.value.split("/", 1)[-1]


def dedupe_batch(candidates: list[SignalCandidate]) -> list[SignalCandidate]:
    """Collapse candidates sharing (normalized title, kind), keeping the first."""
    seen: set[tuple[str, str]] = set()
    unique = []
    for candidate in candidates:
        key = (candidate.normalized_title, candidate.kind.value)
        if key in seen:
            continue
        seen.add(key)
        unique.append(candidate)
    return unique


class ScrapePhase:
    """
    Executes scrape passes against a shared RunContext.

    Args:
        writer: Graph writer for signals, actors and new sources.
        extractor: Text → signal candidates.
        web: Page, search and feed fetcher.
        social: Social fetcher, or None to skip social sources.
        config: Scout configuration.
        cancel: Set to stop issuing new fetches; in-flight work finishes.
    """

    def __init__(
        self,
        writer: GraphWriter,
        extractor: Extractor,
        web: WebFetcher,
        social: SocialFetcher | None = None,
        config: ScoutConfig | None = None,
        sources_config: SourcesConfig | None = None,
        budget: BudgetTracker | None = None,
        cancel: asyncio.Event | None = None,
        metrics: ScoutMetrics | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._writer = writer
        self._extractor = extractor
        self._web = web
        self._social = social
        self._config = config or ScoutConfig()
        self._sources_config = sources_config or SourcesConfig()
        self._budget = budget
        self._cancel = cancel or asyncio.Event()
        self._metrics = metrics or get_metrics()
        self._clock = clock

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # ------------------------------------------------------------------
    # Worker pool
    # ------------------------------------------------------------------

    async def _bounded(
        self,
        jobs: list[Callable[[], Awaitable[T]]],
        limit: int,
    ) -> list[T | FetchError | _Skipped]:
        """Run jobs with at most ``limit`` in flight.

        Failures come back as FetchError values; jobs not yet started when
        cancellation is observed come back as SKIPPED.
        """
        semaphore = asyncio.Semaphore(limit)

        async def run(job: Callable[[], Awaitable[T]]) -> T | FetchError | _Skipped:
            async with semaphore:
                if self.cancelled:
                    return SKIPPED
                try:
                    return await job()
                except FetchError as e:
                    return e
                except Exception as e:
                    return FetchError(f"{type(e).__name__}: {e}")

        return await asyncio.gather(*(run(job) for job in jobs))

    def _record_fetch_error(
        self, ctx: RunContext, source: Source, error: FetchError, *, own_url: bool
    ) -> None:
        query_layer = isinstance(error, QueryError)
        if query_layer:
            ctx.stats.query_errors += 1
        else:
            ctx.stats.urls_failed += 1
        ctx.stats.fetch_errors_by_type[error.error_type] += 1
        self._metrics.record_fetch_error(ctx.city, error.error_type)
        if own_url or query_layer:
            ctx.record_failure(source.canonical_key, query_layer=query_layer)
        logger.warning(
            "Fetch failed",
            source=source.canonical_key,
            url=error.url,
            error_type=error.error_type,
            error=str(error),
        )

    # ------------------------------------------------------------------
    # Web
    # ------------------------------------------------------------------

    async def _resolve_listing(self, source: Source) -> list[str]:
        """URLs behind a query or feed source."""
        if source.kind == SourceKind.QUERY:
            try:
                results = await self._web.search(
                    source.value, self._config.search_results_per_query
                )
            except QueryError:
                raise
            except Exception as e:
                raise QueryError(str(e), url=source.value) from e
            return [r.url for r in results]
        items = await self._web.fetch_feed(source.url or source.value)
        return [i.url for i in items]

    async def run_web(self, sources: list[Source], ctx: RunContext) -> int:
        """Scrape web, RSS and query sources. Returns signals stored."""
        web_sources = [
            s for s in sources if s.kind in (SourceKind.WEB, SourceKind.RSS, SourceKind.QUERY)
        ]
        if not web_sources:
            return 0

        targets: list[tuple[Source, str]] = [
            (s, s.url) for s in web_sources if s.kind == SourceKind.WEB and s.url
        ]

        listings = [s for s in web_sources if s.kind in (SourceKind.QUERY, SourceKind.RSS)]
        if self._budget is not None:
            allowed = []
            for source in listings:
                if source.kind == SourceKind.QUERY:
                    if not self._budget.has_budget(Operation.SEARCH):
                        ctx.stats.budget_exhausted = True
                        continue
                    self._budget.spend(Operation.SEARCH)
                allowed.append(source)
            listings = allowed

        resolved = await self._bounded(
            [lambda s=s: self._resolve_listing(s) for s in listings],
            self._config.max_concurrent_fetches,
        )
        for source, outcome in zip(listings, resolved):
            if outcome is SKIPPED:
                continue
            if isinstance(outcome, FetchError):
                self._record_fetch_error(ctx, source, outcome, own_url=True)
                continue
            ctx.record_attempt(source.canonical_key)
            for url in outcome:
                targets.append((source, url))

        # One fetch per URL per run; the first source to claim it wins
        seen_urls: set[str] = set()
        unique_targets = []
        for source, url in targets:
            clean = sanitize_url(url)
            if clean in seen_urls:
                continue
            seen_urls.add(clean)
            unique_targets.append((source, url))

        pages = await self._bounded(
            [lambda u=url: self._web.fetch_page(u) for _, url in unique_targets],
            self._config.max_concurrent_fetches,
        )

        items: list[ContentItem] = []
        for (source, url), outcome in zip(unique_targets, pages):
            own_url = source.kind == SourceKind.WEB
            if outcome is SKIPPED:
                continue
            if isinstance(outcome, FetchError):
                if outcome.url is None:
                    outcome.url = url
                self._record_fetch_error(ctx, source, outcome, own_url=own_url)
                continue
            page: FetchedPage = outcome
            ctx.stats.urls_scraped += 1
            if own_url:
                ctx.record_attempt(source.canonical_key)
            # Search results are open-web pages and never become known city URLs
            if source.kind != SourceKind.QUERY:
                ctx.record_alias(url, source.canonical_key)
                if page.canonical_url and ctx.record_alias(
                    page.canonical_url, source.canonical_key
                ):
                    logger.debug(
                        "Resolved canonical URL",
                        source=source.canonical_key,
                        url=url,
                        canonical=page.canonical_url,
                    )
            items.append(
                ContentItem(
                    source=source,
                    url=page.canonical_url or url,
                    text=page.text,
                    canonical_url=page.canonical_url,
                )
            )

        return await self.store_signals(items, ctx, known_urls=ctx.known_urls())

    # ------------------------------------------------------------------
    # Social
    # ------------------------------------------------------------------

    async def run_social(self, sources: list[Source], ctx: RunContext) -> int:
        """Scrape social accounts platform by platform. Returns signals stored."""
        social_sources = [s for s in sources if s.kind == SourceKind.SOCIAL]
        if not social_sources:
            return 0
        if self._social is None:
            logger.info("No social fetcher configured, skipping", accounts=len(social_sources))
            return 0

        by_platform: dict[str, list[Source]] = {}
        for source in social_sources:
            by_platform.setdefault(source.platform or "unknown", []).append(source)

        stored = 0
        for platform, accounts in by_platform.items():
            if self.cancelled:
                break
            # The web pass may have resolved new city URLs since the phase began
            known_urls = ctx.known_urls()

            if self._budget is not None:
                affordable = []
                for source in accounts:
                    if not self._budget.has_budget(Operation.SOCIAL):
                        ctx.stats.budget_exhausted = True
                        break
                    self._budget.spend(Operation.SOCIAL)
                    affordable.append(source)
                accounts = affordable

            results = await self._bounded(
                [
                    lambda s=s: self._social.fetch_account(
                        platform, _handle(s), self._config.posts_per_account
                    )
                    for s in accounts
                ],
                self._config.max_concurrent_fetches,
            )

            items: list[ContentItem] = []
            for source, outcome in zip(accounts, results):
                if outcome is SKIPPED:
                    continue
                if isinstance(outcome, FetchError):
                    self._record_fetch_error(ctx, source, outcome, own_url=True)
                    continue
                result: SocialFetchResult = outcome
                ctx.record_attempt(source.canonical_key)
                ctx.stats.social_accounts_scraped += 1
                ctx.stats.social_posts += len(result.posts)
                ctx.record_alias(result.canonical_url, source.canonical_key)
                text = result.combined_text()
                if text:
                    items.append(
                        ContentItem(
                            source=source,
                            url=result.canonical_url,
                            text=text,
                            canonical_url=result.canonical_url,
                        )
                    )

            stored += await self.store_signals(items, ctx, known_urls=known_urls)
        return stored

    # ------------------------------------------------------------------
    # Topic discovery
    # ------------------------------------------------------------------

    async def discover_from_topics(self, topics: list[str], ctx: RunContext) -> list[Source]:
        """
        Search topics on social platforms and adopt productive authors.

        Each (topic, platform) search consumes one unit of the run's search
        cap. Posts are grouped by author; an author not yet known as a
        source whose posts yield at least one signal becomes a new source
        at the hashtag-discovery starting weight. Caps truncate silently.
        """
        if self._social is None or not topics:
            return []

        created: list[Source] = []
        initial_weight = self._sources_config.initial_weight_for(
            DiscoveryMethod.HASHTAG_DISCOVERY
        )

        for topic in topics:
            for platform in self._config.discovery_platforms:
                if self.cancelled or ctx.budget.sources_exhausted:
                    return created
                if self._budget is not None and not self._budget.has_budget(Operation.SEARCH):
                    ctx.stats.budget_exhausted = True
                    return created
                if not ctx.budget.take_search():
                    logger.info(
                        "Discovery search cap reached",
                        searches=ctx.budget.searches_used,
                    )
                    return created
                if self._budget is not None:
                    self._budget.spend(Operation.SEARCH)
                ctx.stats.discovery_searches += 1

                try:
                    posts = await self._social.search_topic(
                        platform, topic, self._config.posts_per_topic_search
                    )
                except FetchError as e:
                    ctx.stats.fetch_errors_by_type[e.error_type] += 1
                    self._metrics.record_fetch_error(ctx.city, e.error_type)
                    logger.warning("Topic search failed", topic=topic, platform=platform, error=str(e))
                    continue

                ctx.stats.discovery_posts_found += len(posts)
                by_author: dict[str, list[str]] = {}
                for post in posts:
                    if post.text.strip():
                        by_author.setdefault(normalize_handle(post.author), []).append(post.text)

                for author, texts in by_author.items():
                    if self.cancelled or ctx.budget.sources_exhausted:
                        return created
                    key = canonical_key(ctx.city, SourceKind.SOCIAL.value, author, platform)
                    url = profile_url(platform, author)
                    if key in ctx.known_source_keys or ctx.resolve_url(url):
                        continue

                    source = Source.create(
                        ctx.city,
                        SourceKind.SOCIAL,
                        author,
                        platform=platform,
                        role=SourceRole.MIXED,
                        discovery_method=DiscoveryMethod.HASHTAG_DISCOVERY,
                        weight=initial_weight,
                        gap_context=f"topic:{topic}",
                        created_at=self._clock(),
                    )
                    known_urls = ctx.known_urls()
                    item = ContentItem(source=source, url=url, text="\n\n".join(texts))
                    extracted = await self._extract([item], ctx)
                    if not extracted or not extracted[0].result.signals:
                        continue

                    try:
                        inserted = await self._writer.upsert_source(source)
                    except Exception as e:
                        logger.error("Failed to create discovered source", source=key, error=str(e))
                        continue
                    if not inserted:
                        ctx.register_source(source)
                        continue

                    ctx.budget.take_source()
                    ctx.register_source(source)
                    ctx.record_attempt(source.canonical_key)
                    ctx.stats.discovery_sources_created += 1
                    self._metrics.record_source_created(ctx.city, DiscoveryMethod.HASHTAG_DISCOVERY.value)
                    created.append(source)
                    logger.info("Discovered source from topic", source=key, topic=topic)

                    await self._persist(extracted, ctx, known_urls)
        return created

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    async def store_signals(
        self,
        items: list[ContentItem],
        ctx: RunContext,
        known_urls: frozenset[str] | None = None,
    ) -> int:
        """Hash-filter, extract, dedup and persist. Returns signals stored."""
        if known_urls is None:
            known_urls = ctx.known_urls()
        extracted = await self._extract(items, ctx)
        return await self._persist(extracted, ctx, known_urls)

    async def _extract(self, items: list[ContentItem], ctx: RunContext) -> list[_Extracted]:
        fresh: list[tuple[ContentItem, str]] = []
        for item in items:
            if not item.text.strip():
                continue
            page_hash = content_hash(item.text)
            if page_hash in ctx.seen_content_hashes:
                ctx.stats.urls_unchanged += 1
                self._metrics.record_duplicate(ctx.city, "content_hash")
                continue
            ctx.seen_content_hashes.add(page_hash)
            if self._budget is not None:
                if not self._budget.has_budget(Operation.EXTRACTION):
                    ctx.stats.budget_exhausted = True
                    continue
                self._budget.spend(Operation.EXTRACTION)
            fresh.append((item, page_hash))

        semaphore = asyncio.Semaphore(self._config.max_concurrent_extractions)

        async def extract_one(item: ContentItem) -> ExtractionResult | Exception:
            async with semaphore:
                try:
                    return await self._extractor.extract(item.text, item.url)
                except Exception as e:
                    return e

        results = await asyncio.gather(*(extract_one(item) for item, _ in fresh))

        extracted = []
        for (item, page_hash), result in zip(fresh, results):
            if isinstance(result, Exception):
                ctx.stats.extraction_failures += 1
                logger.warning("Extraction failed", url=item.url, error=str(result))
                continue
            extracted.append(_Extracted(item, page_hash, result))
        return extracted

    def _is_relevant(
        self,
        candidate: SignalCandidate,
        item: ContentItem,
        known_urls: frozenset[str],
        city: str,
    ) -> bool:
        if sanitize_url(item.url) in known_urls:
            return True
        if item.canonical_url and sanitize_url(item.canonical_url) in known_urls:
            return True
        if candidate.has_location:
            return True
        text = f"{candidate.title} {candidate.body}".lower()
        terms = [city, *self._config.geo_terms]
        return any(term.lower() in text for term in terms if term)

    async def _persist(
        self,
        extracted: list[_Extracted],
        ctx: RunContext,
        known_urls: frozenset[str],
    ) -> int:
        stored = 0
        for entry in extracted:
            result = entry.result
            added = ctx.add_expansion_queries(result.implied_queries)
            ctx.stats.expansion_queries_collected += added
            ctx.stats.signals_extracted += len(result.signals)

            candidates = dedupe_batch(result.signals)
            ctx.stats.signals_deduplicated += len(result.signals) - len(candidates)

            for candidate in candidates:
                if not self._is_relevant(candidate, entry.item, known_urls, ctx.city):
                    ctx.stats.signals_filtered += 1
                    continue
                try:
                    if await self._store_candidate(candidate, entry, ctx):
                        stored += 1
                except Exception as e:
                    ctx.stats.store_failures += 1
                    logger.error(
                        "Failed to persist candidate",
                        title=candidate.title,
                        url=entry.item.url,
                        error=str(e),
                    )
        return stored

    async def _store_candidate(
        self,
        candidate: SignalCandidate,
        entry: _Extracted,
        ctx: RunContext,
    ) -> bool:
        now = self._clock()
        source = entry.item.source

        embedding = await ctx.similarity.get_or_compute(candidate.embed_text())
        if embedding is None:
            ctx.stats.embedding_failures += 1

        dedup = ctx.similarity.classify(
            embedding,
            latitude=candidate.latitude,
            longitude=candidate.longitude,
            now=now,
        )
        if dedup.dimension_mismatch:
            ctx.stats.embedding_dimension_mismatches += 1
        if dedup.decision == DedupDecision.DUPLICATE:
            ctx.stats.signals_deduplicated += 1
            self._metrics.record_duplicate(ctx.city, "embedding")
            await self._confirm_existing(dedup, source, ctx, now)
            return False

        flagged = dedup.decision == DedupDecision.NEAR_DUPLICATE
        signal = Signal.from_candidate(
            candidate,
            city=ctx.city,
            source_key=source.canonical_key,
            source_url=entry.item.url,
            created_at=now,
            embedding=embedding,
            page_hash=entry.page_hash,
            near_duplicate_of=dedup.match_id if flagged else None,
            similarity=dedup.similarity if flagged else None,
            implied_queries=entry.result.implied_queries,
        )

        try:
            signal_id = await self._writer.create_node(signal)
        except Exception as e:
            ctx.stats.store_failures += 1
            logger.error("Failed to store signal", title=signal.title, error=str(e))
            return False

        ctx.record_signal(source.canonical_key)
        ctx.stats.signals_stored += 1
        ctx.stats.by_kind[signal.kind.value] += 1
        if flagged:
            ctx.stats.signals_flagged += 1
        self._metrics.record_signal_stored(ctx.city, signal.kind.value, flagged=flagged)

        if embedding is not None:
            ctx.similarity.add(
                signal_id,
                embedding,
                source_key=source.canonical_key,
                latitude=signal.latitude,
                longitude=signal.longitude,
                created_at=now,
            )

        await self._link_actors(candidate.actors, signal_id, ctx.city, now)
        return True

    async def _confirm_existing(
        self, dedup: DedupResult, source: Source, ctx: RunContext, now: datetime
    ) -> None:
        """Credit the stored signal a duplicate matched.

        The same source seeing it again only refreshes its confirmation
        time; a different source reporting it counts as corroboration.
        """
        if dedup.match_id is None:
            return
        same_source = dedup.match_source_key == source.canonical_key
        try:
            if same_source:
                await self._writer.refresh_signal(dedup.match_id, now)
            else:
                await self._writer.corroborate_signal(dedup.match_id, now)
        except Exception as e:
            ctx.stats.store_failures += 1
            logger.error("Failed to confirm existing signal", match=dedup.match_id, error=str(e))
            return

        if same_source:
            ctx.stats.signals_refreshed += 1
        else:
            ctx.stats.signals_corroborated += 1
        logger.debug(
            "Duplicate matched stored signal",
            match=dedup.match_id,
            similarity=round(dedup.similarity, 3),
            corroborated=not same_source,
        )

    async def _link_actors(
        self, actors: list[str], signal_id: str, city: str, now: datetime
    ) -> None:
        for name in {a.strip() for a in actors if a.strip()}:
            try:
                actor_id = await self._writer.upsert_actor(name, city)
                await self._writer.link_actor_to_signal(actor_id, signal_id, now)
            except Exception as e:
                logger.warning("Failed to link actor", actor=name, signal=signal_id, error=str(e))
