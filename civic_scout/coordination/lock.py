"""
City-scoped advisory run lock.

The scout takes the lock exclusively for a whole run. A lock older than
the stale TTL belongs to a crashed run and may be taken over. Takeover
is decided inside the store in one conditional write, so two runs racing
for a stale lock cannot both win.
"""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Protocol

import structlog

from civic_scout.graph.base import GraphReader, GraphWriter
from civic_scout.graph.schemas import ScoutLock

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LockStore(GraphReader, GraphWriter, Protocol):
    """Graph store exposing both lock read and lock write calls."""


class ScoutLockManager:
    """
    Acquire, release and inspect the scout lock for a city.

    Usage:
        locks = ScoutLockManager(store, stale_after=timedelta(minutes=30))
        if await locks.acquire(city, run_id):
            try:
                ...
            finally:
                await locks.release(city, run_id)
    """

    def __init__(
        self,
        store: LockStore,
        stale_after: timedelta = timedelta(minutes=30),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._stale_after = stale_after
        self._clock = clock

    @property
    def stale_after(self) -> timedelta:
        return self._stale_after

    async def acquire(self, city: str, run_id: str) -> bool:
        """Take the lock if free or stale. Never blocks."""
        now = self._clock()
        acquired = await self._store.try_acquire_scout_lock(
            city, run_id, now, now - self._stale_after
        )
        if acquired:
            logger.debug("Scout lock acquired", city=city, run_id=run_id)
        return acquired

    async def release(self, city: str, run_id: str) -> None:
        """Release the lock if this run still holds it."""
        await self._store.release_scout_lock(city, run_id)
        logger.debug("Scout lock released", city=city, run_id=run_id)

    async def current(self, city: str) -> ScoutLock | None:
        return await self._store.get_scout_lock(city)

    async def is_scout_running(self, city: str, now: datetime | None = None) -> bool:
        """True if a non-stale lock is held for the city."""
        lock = await self._store.get_scout_lock(city)
        if lock is None:
            return False
        return not lock.is_stale(now or self._clock(), self._stale_after)
