"""Tests for the daily BudgetTracker."""

from civic_scout.pipeline.budget import BudgetTracker, Operation
from civic_scout.pipeline.config import ScoutConfig

COSTS = {Operation.EXTRACTION: 1, Operation.SEARCH: 2, Operation.SOCIAL: 3}


class TestBudgetTracker:
    """Spend tracking against a daily limit."""

    def test_zero_limit_is_unlimited(self) -> None:
        budget = BudgetTracker(0, COSTS)
        budget.spend(Operation.SOCIAL, count=1000)

        assert budget.is_unlimited
        assert budget.has_budget(Operation.SOCIAL)
        assert budget.remaining_cents is None

    def test_stops_at_limit(self) -> None:
        budget = BudgetTracker(5, COSTS)
        assert budget.has_budget(Operation.SEARCH)
        budget.spend(Operation.SEARCH)
        budget.spend(Operation.SEARCH)

        assert budget.spent_cents == 4
        assert budget.has_budget(Operation.EXTRACTION)
        assert not budget.has_budget(Operation.SEARCH)
        assert budget.remaining_cents == 1

    def test_count_multiplies_cost(self) -> None:
        budget = BudgetTracker(10, COSTS)
        assert budget.has_budget(Operation.SOCIAL, count=3)
        assert not budget.has_budget(Operation.SOCIAL, count=4)

    def test_from_config(self) -> None:
        config = ScoutConfig(daily_budget_cents=100, cost_search_cents=7)
        budget = BudgetTracker.from_config(config)
        budget.spend(Operation.SEARCH)
        assert budget.spent_cents == 7
