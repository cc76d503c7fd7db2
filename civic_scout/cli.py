"""
Command-line interface for civic-scout.

Runs scout passes, manages sources, and checks dependencies.

Usage:
    civic-scout run --city minneapolis          # One scout run
    civic-scout run --city minneapolis --mock   # Offline run on demo data
    civic-scout init-db                         # Create tables
    civic-scout sources list --city minneapolis
    civic-scout sources add --city minneapolis --kind web --value https://...
    civic-scout lock-status --city minneapolis
    civic-scout health
"""

import asyncio
import json
import signal
import sys
from datetime import datetime, timedelta, timezone

import click

from civic_scout.config.settings import get_settings
from civic_scout.observability.logging import setup_logging
from civic_scout.observability.metrics import get_metrics


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Civic Scout - community signal discovery for one city at a time."""
    if debug:
        import os
        os.environ["LOG_LEVEL"] = "DEBUG"
        get_settings.cache_clear()

    settings = get_settings()
    # Tracing first, so setup_logging adds the trace id processor
    if settings.tracing_enabled:
        from civic_scout.observability.tracing import setup_tracing

        setup_tracing(
            service_name=settings.otel_service_name,
            otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        )

    setup_logging()


def _resolve_city(city: str | None) -> str:
    city = city or get_settings().default_city
    if not city:
        raise click.UsageError("--city is required (or set DEFAULT_CITY)")
    return city.lower()


def demo_sources(city: str) -> list:
    """Seed sources matching the demo fetchers' canned data."""
    from civic_scout.sources.schemas import Source, SourceKind, SourceRole

    slug = city.lower().replace(" ", "")
    return [
        Source.create(city, SourceKind.WEB, f"https://{slug}.example.org/news", role=SourceRole.TENSION),
        Source.create(city, SourceKind.WEB, f"https://{slug}.example.org/help", role=SourceRole.RESPONSE),
        Source.create(city, SourceKind.QUERY, f"{city} mutual aid", role=SourceRole.RESPONSE),
    ]


@main.command()
@click.option("--city", default=None, help="City to scout")
@click.option("--mock", is_flag=True, help="Use in-memory graph, demo pages and mock extractor")
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
@click.option("--json-output", is_flag=True, help="Print statistics as JSON")
def run(city: str | None, mock: bool, metrics: bool, json_output: bool) -> None:
    """Run one scout pass for a city."""
    from civic_scout.pipeline.config import ScoutConfig
    from civic_scout.pipeline.errors import ScoutAlreadyRunningError, SetupError
    from civic_scout.pipeline.orchestrator import Orchestrator

    city = _resolve_city(city)
    settings = get_settings()

    async def run_mock():
        from civic_scout.embedding.base import HashingEmbedder
        from civic_scout.extraction.base import MockExtractor
        from civic_scout.fetch.mock import build_demo_fetchers
        from civic_scout.graph.memory import InMemoryGraphStore

        web, social = build_demo_fetchers(city)
        slug = city.replace(" ", "")
        orchestrator = Orchestrator(
            city,
            InMemoryGraphStore(demo_sources(city)),
            MockExtractor(),
            HashingEmbedder(),
            web,
            social,
            config=ScoutConfig(seed_topics=[f"{slug}mutualaid"]),
        )
        return await _drive(orchestrator)

    async def run_live():
        import redis.asyncio as redis

        from civic_scout.embedding.service import EmbeddingService
        from civic_scout.extraction.llm_extractor import LLMExtractor
        from civic_scout.fetch.web import HttpWebFetcher
        from civic_scout.graph.storage import GraphStore
        from civic_scout.storage.database import Database

        if not settings.extraction_configured:
            raise click.UsageError("ANTHROPIC_API_KEY is not set; use --mock for an offline run")

        redis_client = redis.from_url(str(settings.redis_url))
        embedder = EmbeddingService(redis_client=redis_client)
        search_key = (
            settings.search_api_key.get_secret_value() if settings.search_api_key else None
        )
        try:
            async with Database() as db, HttpWebFetcher(
                search_api_url=settings.search_api_url,
                search_api_key=search_key,
                search_location=city,
            ) as web:
                orchestrator = Orchestrator(
                    city,
                    GraphStore(db),
                    LLMExtractor(city, api_key=settings.anthropic_api_key.get_secret_value()),
                    embedder,
                    web,
                )
                return await _drive(orchestrator)
        finally:
            # Closes redis_client too
            await embedder.close()

    async def _drive(orchestrator):
        if metrics:
            get_metrics().start_server()

        # First signal cancels gracefully; the run still releases its lock
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, orchestrator.cancel)
        try:
            return await orchestrator.run()
        finally:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)

    try:
        stats = asyncio.run(run_mock() if mock else run_live())
    except ScoutAlreadyRunningError as e:
        click.echo(click.style(f"Skipped: {e}", fg="yellow"))
        sys.exit(2)
    except SetupError as e:
        click.echo(click.style(f"Run failed: {e}", fg="red"), err=True)
        sys.exit(1)

    if json_output:
        click.echo(json.dumps(stats.to_dict(), indent=2))
    else:
        click.echo(stats.summary())


@main.command("init-db")
def init_db() -> None:
    """Initialize the database schema."""
    from civic_scout.graph.storage import GraphStore
    from civic_scout.storage.database import Database

    async def run():
        async with Database() as db:
            await GraphStore(db).create_tables()
        click.echo("Database initialized successfully")

    asyncio.run(run())


@main.group()
def sources() -> None:
    """Inspect and seed sources."""


@sources.command("list")
@click.option("--city", default=None, help="City scope")
@click.option("--all", "include_inactive", is_flag=True, help="Include deactivated sources")
def sources_list(city: str | None, include_inactive: bool) -> None:
    """List sources ordered by weight."""
    from civic_scout.graph.storage import GraphStore
    from civic_scout.storage.database import Database

    city = _resolve_city(city)

    async def run():
        async with Database() as db:
            return await GraphStore(db).list_sources(city, include_inactive=include_inactive)

    rows = asyncio.run(run())
    if not rows:
        click.echo(f"No sources for {city}")
        return

    click.echo(f"\n{'Weight':>7}  {'Cadence':>8}  {'Scrapes':>7}  {'Signals':>7}  Source")
    click.echo("-" * 80)
    for source in rows:
        cadence = f"{source.cadence_hours:.0f}h" if source.cadence_hours else "-"
        line = (
            f"{source.weight:>7.3f}  {cadence:>8}  {source.scrape_count:>7}  "
            f"{source.signals_produced:>7}  {source.canonical_key}"
        )
        click.echo(line if source.active else click.style(line + "  (inactive)", dim=True))


@sources.command("add")
@click.option("--city", default=None, help="City scope")
@click.option("--kind", type=click.Choice(["web", "rss", "query", "social"]), required=True)
@click.option("--value", required=True, help="URL, query text or account handle")
@click.option("--platform", default=None, help="Platform for social accounts")
@click.option(
    "--role",
    type=click.Choice(["tension", "response", "mixed"]),
    default="mixed",
    show_default=True,
)
def sources_add(city: str | None, kind: str, value: str, platform: str | None, role: str) -> None:
    """Add a curated source."""
    from civic_scout.graph.storage import GraphStore
    from civic_scout.sources.config import SourcesConfig
    from civic_scout.sources.schemas import DiscoveryMethod, Source, SourceKind, SourceRole
    from civic_scout.storage.database import Database

    city = _resolve_city(city)
    if kind == "social" and not platform:
        raise click.UsageError("--platform is required for social sources")

    source = Source.create(
        city,
        SourceKind(kind),
        value,
        platform=platform,
        role=SourceRole(role),
        discovery_method=DiscoveryMethod.CURATED,
        weight=SourcesConfig().initial_weight_for(DiscoveryMethod.CURATED),
        created_at=datetime.now(timezone.utc),
    )

    async def run():
        async with Database() as db:
            return await GraphStore(db).upsert_source(source)

    if asyncio.run(run()):
        click.echo(click.style(f"Added {source.canonical_key}", fg="green"))
    else:
        click.echo(f"Already known: {source.canonical_key}")


@main.command("lock-status")
@click.option("--city", default=None, help="City scope")
def lock_status(city: str | None) -> None:
    """Show whether a scout run holds the city lock."""
    from civic_scout.graph.storage import GraphStore
    from civic_scout.pipeline.config import ScoutConfig
    from civic_scout.storage.database import Database

    city = _resolve_city(city)
    stale_after = timedelta(minutes=ScoutConfig().lock_stale_minutes)

    async def run():
        async with Database() as db:
            return await GraphStore(db).get_scout_lock(city)

    lock = asyncio.run(run())
    if lock is None:
        click.echo(f"{city}: idle")
        return

    now = datetime.now(timezone.utc)
    age = now - lock.started_at
    state = "stale" if lock.is_stale(now, stale_after) else "running"
    click.echo(
        f"{city}: {state} (run {lock.run_id}, started {lock.started_at.isoformat()}, "
        f"{age.total_seconds() / 60:.1f} min ago)"
    )


@main.command()
def health() -> None:
    """Check health of all dependencies."""
    import structlog
    logger = structlog.get_logger()

    async def check():
        results: dict[str, bool] = {}
        settings = get_settings()

        try:
            import redis.asyncio as redis
            client = redis.from_url(str(settings.redis_url))
            results["redis"] = bool(await client.ping())
            await client.aclose()
        except Exception as e:
            results["redis"] = False
            logger.error("Redis health check failed", error=str(e))

        try:
            from civic_scout.storage.database import Database
            async with Database() as db:
                results["postgres"] = await db.health_check()
        except Exception as e:
            results["postgres"] = False
            logger.error("Postgres health check failed", error=str(e))

        results["extraction_configured"] = settings.extraction_configured
        results["search_configured"] = settings.search_configured

        click.echo("\nHealth Check Results:")
        click.echo("-" * 40)

        all_healthy = True
        for name, status in results.items():
            icon = "✓" if status else "✗"
            color = "green" if status else "red"
            click.echo(click.style(f"  {icon} {name}: {status}", fg=color))
            if name in ("redis", "postgres") and not status:
                all_healthy = False

        click.echo("-" * 40)

        if all_healthy:
            click.echo(click.style("All core services healthy!", fg="green"))
            sys.exit(0)
        else:
            click.echo(click.style("Some services unhealthy!", fg="red"))
            sys.exit(1)

    asyncio.run(check())


if __name__ == "__main__":
    main()
