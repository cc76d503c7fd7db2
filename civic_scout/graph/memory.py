"""Dict-backed graph store for tests and ``--mock`` runs.

Mirrors GraphStore semantics, including the conditional lock takeover.
Every public call is appended to ``calls`` so tests can assert which
parts of the graph a run touched.
"""

import dataclasses
import uuid
from datetime import datetime

from civic_scout.graph.schemas import ScoutLock
from civic_scout.signals.schemas import ReapStats, Signal, SignalReference
from civic_scout.sources.schemas import Source
from civic_scout.sources.urls import is_social_url


class InMemoryGraphStore:
    def __init__(self, sources: list[Source] | None = None) -> None:
        self.sources: dict[str, Source] = {}
        self.signals: dict[str, Signal] = {}
        self.actors: dict[tuple[str, str], str] = {}
        self.actor_links: dict[tuple[str, str], datetime] = {}
        self.locks: dict[str, ScoutLock] = {}
        self.deactivation_reasons: dict[str, str] = {}
        self.calls: list[str] = []
        self.fail_on: dict[str, Exception] = {}
        for source in sources or []:
            self.sources[source.canonical_key] = dataclasses.replace(source)

    def _call(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail_on:
            raise self.fail_on[name]

    # Reader

    async def get_active_sources(self, city: str) -> list[Source]:
        self._call("get_active_sources")
        return [
            dataclasses.replace(s)
            for s in self.sources.values()
            if s.city == city and s.active
        ]

    async def get_source_keys(self, city: str) -> set[str]:
        self._call("get_source_keys")
        return {k for k, s in self.sources.items() if s.city == city}

    async def recently_linked_signals(self, city: str, since: datetime) -> list[Signal]:
        self._call("recently_linked_signals")
        linked = {sid for (_, sid), at in self.actor_links.items() if at >= since}
        return [s for s in self.signals.values() if s.city == city and s.id in linked]

    async def recent_signals(self, city: str, since: datetime) -> list[Signal]:
        self._call("recent_signals")
        return [
            s
            for s in self.signals.values()
            if s.city == city and (s.created_at is None or s.created_at >= since)
        ]

    async def unresolved_signal_references(
        self, city: str, limit: int, after: str | None = None
    ) -> list[SignalReference]:
        self._call("unresolved_signal_references")
        known_urls = {s.url for s in self.sources.values() if s.city == city and s.url}
        refs: dict[str, SignalReference] = {}
        for signal in self.signals.values():
            url = signal.source_url
            if signal.city != city or not url.startswith("http") or url in known_urls:
                continue
            if is_social_url(url) or (after is not None and url <= after):
                continue
            refs.setdefault(url, SignalReference(signal.id, url, signal.title))
        return [refs[url] for url in sorted(refs)][:limit]

    async def get_scout_lock(self, city: str) -> ScoutLock | None:
        self._call("get_scout_lock")
        return self.locks.get(city)

    # Writer

    async def create_node(self, signal: Signal) -> str:
        self._call("create_node")
        self.signals[signal.id] = signal
        return signal.id

    async def corroborate_signal(self, signal_id: str, confirmed_at: datetime) -> None:
        self._call("corroborate_signal")
        signal = self.signals.get(signal_id)
        if signal is not None:
            signal.corroboration_count += 1
            signal.last_confirmed_at = confirmed_at

    async def refresh_signal(self, signal_id: str, confirmed_at: datetime) -> None:
        self._call("refresh_signal")
        signal = self.signals.get(signal_id)
        if signal is not None:
            signal.last_confirmed_at = confirmed_at

    async def upsert_actor(self, name: str, city: str) -> str:
        self._call("upsert_actor")
        key = (city, name.strip().lower())
        if key not in self.actors:
            self.actors[key] = str(uuid.uuid4())
        return self.actors[key]

    async def link_actor_to_signal(
        self, actor_id: str, signal_id: str, linked_at: datetime
    ) -> None:
        self._call("link_actor_to_signal")
        self.actor_links.setdefault((actor_id, signal_id), linked_at)

    async def upsert_source(self, source: Source) -> bool:
        self._call("upsert_source")
        if source.canonical_key in self.sources:
            return False
        self.sources[source.canonical_key] = dataclasses.replace(source)
        return True

    async def record_source_scrape(
        self, canonical_key: str, signals_produced: int, scraped_at: datetime
    ) -> None:
        self._call("record_source_scrape")
        source = self.sources.get(canonical_key)
        if source is None:
            return
        source.last_scraped = scraped_at
        source.scrape_count += 1
        source.signals_produced += signals_produced
        source.consecutive_failures = 0
        if signals_produced > 0:
            source.consecutive_empty_runs = 0
            source.last_produced_signal = scraped_at
        else:
            source.consecutive_empty_runs += 1

    async def record_source_failure(self, canonical_key: str, failed_at: datetime) -> None:
        self._call("record_source_failure")
        source = self.sources.get(canonical_key)
        if source is not None:
            source.consecutive_failures += 1

    async def set_source_weight(
        self, canonical_key: str, weight: float, cadence_hours: float
    ) -> None:
        self._call("set_source_weight")
        source = self.sources.get(canonical_key)
        if source is not None:
            source.weight = weight
            source.cadence_hours = cadence_hours

    async def set_quality_penalty(self, canonical_key: str, penalty: float) -> None:
        self._call("set_quality_penalty")
        source = self.sources.get(canonical_key)
        if source is not None:
            source.quality_penalty = penalty

    async def deactivate_source(self, canonical_key: str, reason: str) -> None:
        self._call("deactivate_source")
        source = self.sources.get(canonical_key)
        if source is not None:
            source.active = False
            self.deactivation_reasons[canonical_key] = reason

    async def reap_expired_signals(self, city: str, now: datetime) -> ReapStats:
        self._call("reap_expired_signals")
        expired = [
            sid
            for sid, s in self.signals.items()
            if s.city == city and s.expires_at is not None and s.expires_at < now
        ]
        for sid in expired:
            del self.signals[sid]
        self.actor_links = {
            k: v for k, v in self.actor_links.items() if k[1] not in expired
        }
        return ReapStats(signals_reaped=len(expired))

    async def try_acquire_scout_lock(
        self, city: str, run_id: str, now: datetime, stale_before: datetime
    ) -> bool:
        self._call("try_acquire_scout_lock")
        held = self.locks.get(city)
        if held is not None and held.started_at >= stale_before:
            return False
        self.locks[city] = ScoutLock(city=city, run_id=run_id, started_at=now)
        return True

    async def release_scout_lock(self, city: str, run_id: str) -> None:
        self._call("release_scout_lock")
        held = self.locks.get(city)
        if held is not None and held.run_id == run_id:
            del self.locks[city]
