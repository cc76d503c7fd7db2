"""Source scheduling: which sources a run visits, and in what order."""

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import structlog

from civic_scout.pipeline.config import ScoutConfig
from civic_scout.pipeline.weights import cadence_for_weight
from civic_scout.sources.schemas import Source, SourceRole

logger = structlog.get_logger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class ScrapePlan:
    """Ordered work for one run, split by phase."""

    tension_phase: list[Source] = field(default_factory=list)
    response_phase: list[Source] = field(default_factory=list)
    paused: list[Source] = field(default_factory=list)
    explored: list[Source] = field(default_factory=list)

    @property
    def planned(self) -> int:
        return len(self.tension_phase) + len(self.response_phase)


def _priority(source: Source) -> tuple[float, datetime]:
    # Highest weight first, then least recently scraped (never scraped first)
    return (-source.weight, source.last_scraped or _EPOCH)


class Scheduler:
    """
    Plans a run from the city's active sources.

    - due: never scraped, or ``now - last_scraped >= cadence``
    - soft pause: weight below the pause floor with a long empty streak;
      the source stays active until the metrics update deactivates it
    - exploration: stale low-weight sources that are not due, paused ones
      included, compete for ``ceil((due + candidates) * ratio)`` slots (at
      least one when any candidate exists), oldest scrape first
    """

    def __init__(self, config: ScoutConfig | None = None) -> None:
        self._config = config or ScoutConfig()

    def cadence(self, source: Source) -> float:
        if source.cadence_hours is not None:
            return source.cadence_hours
        return cadence_for_weight(source.weight, self._config)

    def is_due(self, source: Source, now: datetime) -> bool:
        if source.last_scraped is None:
            return True
        return now - source.last_scraped >= timedelta(hours=self.cadence(source))

    def is_paused(self, source: Source) -> bool:
        return (
            source.weight < self._config.pause_weight_floor
            and source.consecutive_empty_runs >= self._config.pause_after_empty_runs
        )

    def _is_explorable(self, source: Source, now: datetime) -> bool:
        if source.weight >= self._config.exploration_max_weight:
            return False
        if source.last_scraped is None:
            return False
        return now - source.last_scraped >= timedelta(days=self._config.exploration_stale_days)

    def plan(self, sources: list[Source], now: datetime) -> ScrapePlan:
        plan = ScrapePlan()
        due: list[Source] = []
        candidates: list[Source] = []
        paused: list[Source] = []
        waiting = 0

        for source in sources:
            if not source.active:
                continue
            if self.is_paused(source):
                paused.append(source)
                # Paused sources still get the occasional exploration
                # scrape, so their empty streak can reach deactivation
                if self._is_explorable(source, now):
                    candidates.append(source)
            elif self.is_due(source, now):
                due.append(source)
            elif self._is_explorable(source, now):
                candidates.append(source)
            else:
                waiting += 1

        if candidates:
            slots = max(1, math.ceil((len(due) + len(candidates)) * self._config.exploration_ratio))
            candidates.sort(key=lambda s: s.last_scraped or _EPOCH)
            plan.explored = candidates[:slots]
            due.extend(plan.explored)
        plan.paused = [s for s in paused if s not in plan.explored]

        due.sort(key=_priority)
        for source in due:
            if source.role == SourceRole.RESPONSE:
                plan.response_phase.append(source)
            else:
                plan.tension_phase.append(source)

        logger.info(
            "Scrape plan built",
            tension=len(plan.tension_phase),
            response=len(plan.response_phase),
            paused=len(plan.paused),
            explored=len(plan.explored),
            waiting=waiting + len(candidates) - len(plan.explored),
        )
        return plan
