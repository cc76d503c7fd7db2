"""
Supervisor side of scout coordination.

The supervisor audits stored signals and writes a quality penalty onto
sources whose signals keep getting flagged. Its reads run whenever they
like, but a penalty write changes the inputs of the weight update, so
writes wait until no scout run is in flight for the city. There is a
small window between the check and the write; a run starting inside it
reads the penalty on its next run instead.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Protocol, TypeVar

import structlog

from civic_scout.coordination.backoff import ExponentialBackoff
from civic_scout.coordination.config import SupervisorConfig
from civic_scout.coordination.lock import ScoutLockManager

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class PenaltyWriter(Protocol):
    async def set_quality_penalty(self, canonical_key: str, penalty: float) -> None: ...


def compute_quality_penalty(open_issues: int, config: SupervisorConfig | None = None) -> float:
    """Weight multiplier for a source with ``open_issues`` unresolved audit flags."""
    config = config or SupervisorConfig()
    return max(config.min_penalty, 1.0 - config.penalty_per_issue * max(open_issues, 0))


class FeedbackGate:
    """
    Defers supervisor writes while a scout run holds the city lock.

    Usage:
        gate = FeedbackGate(ScoutLockManager(store))
        written = await gate.write_when_idle(city, lambda: store.set_quality_penalty(key, 0.7))
    """

    def __init__(
        self,
        locks: ScoutLockManager,
        config: SupervisorConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._locks = locks
        self._config = config or SupervisorConfig()
        self._sleep = sleep

    async def write_when_idle(
        self,
        city: str,
        write: Callable[[], Awaitable[T]],
    ) -> bool:
        """Run ``write`` once no scout run is in flight.

        Returns False if every check found a run in progress; the write
        is then left for the next audit.
        """
        backoff = ExponentialBackoff(
            base_delay=self._config.defer_base_seconds,
            max_delay=self._config.defer_max_seconds,
        )
        for attempt in range(self._config.max_defer_attempts):
            if not await self._locks.is_scout_running(city):
                await write()
                return True
            if attempt + 1 < self._config.max_defer_attempts:
                delay = backoff.next_delay()
                logger.info(
                    "Scout run in progress, deferring feedback write",
                    city=city,
                    attempt=attempt + 1,
                    delay_seconds=round(delay, 1),
                )
                await self._sleep(delay)

        logger.warning(
            "Feedback write skipped, scout still running",
            city=city,
            attempts=self._config.max_defer_attempts,
        )
        return False

    async def apply_quality_penalties(
        self,
        writer: PenaltyWriter,
        city: str,
        open_issues: dict[str, int],
    ) -> int:
        """Write penalties for each source key. Returns how many were written."""
        if not open_issues:
            return 0

        async def write_all() -> None:
            for canonical_key, issues in open_issues.items():
                await writer.set_quality_penalty(
                    canonical_key, compute_quality_penalty(issues, self._config)
                )

        if await self.write_when_idle(city, write_all):
            return len(open_issues)
        return 0
