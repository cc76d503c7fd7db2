"""Graph collaborator protocols.

Every writer method is independently transactional: a signal is stored
together with its provenance or not at all, and no call batches writes
for several nodes.
"""

from datetime import datetime
from typing import Protocol, runtime_checkable

from civic_scout.graph.schemas import ScoutLock
from civic_scout.signals.schemas import ReapStats, Signal, SignalReference
from civic_scout.sources.schemas import Source


@runtime_checkable
class GraphReader(Protocol):
    async def get_active_sources(self, city: str) -> list[Source]: ...

    async def get_source_keys(self, city: str) -> set[str]:
        """Canonical keys of every source in the city, active or not."""
        ...

    async def recently_linked_signals(self, city: str, since: datetime) -> list[Signal]:
        """Signals that gained actor links since ``since``."""
        ...

    async def recent_signals(self, city: str, since: datetime) -> list[Signal]:
        """Signals created since ``since``, embeddings included."""
        ...

    async def unresolved_signal_references(
        self, city: str, limit: int, after: str | None = None
    ) -> list[SignalReference]:
        """Uncovered non-social page URLs cited by signals, ordered by URL.

        ``after`` is a keyset cursor: only URLs sorting after it are returned.
        """
        ...

    async def get_scout_lock(self, city: str) -> ScoutLock | None: ...


@runtime_checkable
class GraphWriter(Protocol):
    async def create_node(self, signal: Signal) -> str: ...

    async def corroborate_signal(self, signal_id: str, confirmed_at: datetime) -> None:
        """Another source reported the same signal: bump its count and confirmation time."""
        ...

    async def refresh_signal(self, signal_id: str, confirmed_at: datetime) -> None:
        """The signal's own source reported it again: move its confirmation time."""
        ...

    async def upsert_actor(self, name: str, city: str) -> str: ...

    async def link_actor_to_signal(
        self, actor_id: str, signal_id: str, linked_at: datetime
    ) -> None: ...

    async def upsert_source(self, source: Source) -> bool:
        """Insert a source unless its canonical key exists. True if inserted."""
        ...

    async def record_source_scrape(
        self, canonical_key: str, signals_produced: int, scraped_at: datetime
    ) -> None: ...

    async def record_source_failure(self, canonical_key: str, failed_at: datetime) -> None: ...

    async def set_source_weight(
        self, canonical_key: str, weight: float, cadence_hours: float
    ) -> None: ...

    async def deactivate_source(self, canonical_key: str, reason: str) -> None: ...

    async def reap_expired_signals(self, city: str, now: datetime) -> ReapStats: ...

    async def try_acquire_scout_lock(
        self, city: str, run_id: str, now: datetime, stale_before: datetime
    ) -> bool:
        """Take the city lock if free or older than ``stale_before``."""
        ...

    async def release_scout_lock(self, city: str, run_id: str) -> None: ...
