"""Tests for the in-memory graph store used by mock runs."""

from datetime import timedelta

import pytest

from civic_scout.graph.memory import InMemoryGraphStore
from civic_scout.signals.schemas import Signal, SignalKind
from tests.conftest import CITY, NOW, make_source


def signal(url: str, **fields) -> Signal:
    return Signal(
        city=CITY, kind=SignalKind.NOTICE, title="Notice", body="",
        source_key="k", source_url=url, created_at=NOW, **fields,
    )


class TestInMemoryGraphStore:
    """Behavior shared with the Postgres store."""

    @pytest.mark.asyncio
    async def test_upsert_source_idempotent(self, store: InMemoryGraphStore, web_source) -> None:
        assert not await store.upsert_source(web_source)
        assert await store.upsert_source(make_source("https://new.example.org"))

    @pytest.mark.asyncio
    async def test_sources_are_copies(self, store: InMemoryGraphStore, web_source) -> None:
        loaded = (await store.get_active_sources(CITY))[0]
        loaded.weight = 1.9
        assert store.sources[web_source.canonical_key].weight == web_source.weight

    @pytest.mark.asyncio
    async def test_inactive_sources_excluded(self, store: InMemoryGraphStore, web_source) -> None:
        await store.deactivate_source(web_source.canonical_key, "consecutive_empty_runs")
        assert await store.get_active_sources(CITY) == []
        assert web_source.canonical_key in await store.get_source_keys(CITY)

    @pytest.mark.asyncio
    async def test_record_scrape(self, store: InMemoryGraphStore, web_source) -> None:
        await store.record_source_scrape(web_source.canonical_key, 0, NOW)
        await store.record_source_scrape(web_source.canonical_key, 0, NOW)
        stored = store.sources[web_source.canonical_key]
        assert stored.scrape_count == 2
        assert stored.consecutive_empty_runs == 2

        await store.record_source_scrape(web_source.canonical_key, 3, NOW)
        assert stored.consecutive_empty_runs == 0
        assert stored.last_produced_signal == NOW

    @pytest.mark.asyncio
    async def test_upsert_actor_case_insensitive(self, store: InMemoryGraphStore) -> None:
        first = await store.upsert_actor("Powderhorn PNA", CITY)
        assert await store.upsert_actor("powderhorn pna ", CITY) == first

    @pytest.mark.asyncio
    async def test_references_exclude_known_urls(
        self, store: InMemoryGraphStore, web_source
    ) -> None:
        for s in (
            signal(web_source.url),
            signal("https://parks.example.org"),
            signal("mock://x"),
            signal("https://www.instagram.com/p/1"),
        ):
            await store.create_node(s)

        refs = await store.unresolved_signal_references(CITY, 10)

        assert [r.url for r in refs] == ["https://parks.example.org"]

    @pytest.mark.asyncio
    async def test_references_page_by_url(self, store: InMemoryGraphStore) -> None:
        for url in ("https://c.example.org", "https://a.example.org", "https://b.example.org"):
            await store.create_node(signal(url))

        first = await store.unresolved_signal_references(CITY, 2)
        rest = await store.unresolved_signal_references(CITY, 2, after=first[-1].url)

        assert [r.url for r in first] == ["https://a.example.org", "https://b.example.org"]
        assert [r.url for r in rest] == ["https://c.example.org"]

    @pytest.mark.asyncio
    async def test_reap_removes_expired_and_links(self, store: InMemoryGraphStore) -> None:
        expired = signal("https://a.example.org", expires_at=NOW - timedelta(days=1))
        live = signal("https://b.example.org", expires_at=NOW + timedelta(days=1))
        await store.create_node(expired)
        await store.create_node(live)
        await store.link_actor_to_signal("actor-1", expired.id, NOW)

        stats = await store.reap_expired_signals(CITY, NOW)

        assert stats.signals_reaped == 1
        assert list(store.signals) == [live.id]
        assert store.actor_links == {}

    @pytest.mark.asyncio
    async def test_fail_on(self, store: InMemoryGraphStore) -> None:
        store.fail_on["get_source_keys"] = RuntimeError("down")
        with pytest.raises(RuntimeError):
            await store.get_source_keys(CITY)
