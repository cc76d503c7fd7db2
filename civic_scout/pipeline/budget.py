"""Daily spend tracking for delegated (paid) calls."""

from datetime import date, datetime, timezone
from enum import Enum

import structlog

from civic_scout.pipeline.config import ScoutConfig

logger = structlog.get_logger(__name__)


class Operation(str, Enum):
    EXTRACTION = "extraction"
    SEARCH = "search"
    SOCIAL = "social"


class BudgetTracker:
    """
    Tracks spend in cents against a daily limit. A limit of 0 means
    unlimited. The counter resets when the UTC date changes.

    Usage:
        budget = BudgetTracker.from_config(config)
        if budget.has_budget(Operation.SEARCH):
            budget.spend(Operation.SEARCH)
            ...
    """

    def __init__(
        self,
        daily_limit_cents: int,
        costs: dict[Operation, int],
        spent_cents: int = 0,
        today: date | None = None,
    ) -> None:
        self._limit = daily_limit_cents
        self._costs = dict(costs)
        self._spent = spent_cents
        self._day = today or datetime.now(timezone.utc).date()
        self._warned = False

    @classmethod
    def from_config(cls, config: ScoutConfig) -> "BudgetTracker":
        return cls(
            daily_limit_cents=config.daily_budget_cents,
            costs={
                Operation.EXTRACTION: config.cost_extraction_cents,
                Operation.SEARCH: config.cost_search_cents,
                Operation.SOCIAL: config.cost_social_cents,
            },
        )

    @property
    def is_unlimited(self) -> bool:
        return self._limit == 0

    @property
    def spent_cents(self) -> int:
        self._roll_over()
        return self._spent

    @property
    def remaining_cents(self) -> int | None:
        if self.is_unlimited:
            return None
        return max(0, self._limit - self.spent_cents)

    def _roll_over(self) -> None:
        today = datetime.now(timezone.utc).date()
        if today != self._day:
            self._day = today
            self._spent = 0
            self._warned = False

    def has_budget(self, operation: Operation, count: int = 1) -> bool:
        if self.is_unlimited:
            return True
        ok = self.spent_cents + self._costs.get(operation, 0) * count <= self._limit
        if not ok and not self._warned:
            logger.warning(
                "Daily budget exhausted",
                operation=operation.value,
                spent_cents=self._spent,
                limit_cents=self._limit,
            )
            self._warned = True
        return ok

    def spend(self, operation: Operation, count: int = 1) -> None:
        self._roll_over()
        self._spent += self._costs.get(operation, 0) * count
