"""Tests for the run Scheduler."""

from dataclasses import replace
from datetime import timedelta

import pytest

from civic_scout.pipeline.config import ScoutConfig
from civic_scout.pipeline.scheduler import Scheduler
from civic_scout.pipeline.source_metrics import compute_source_update
from civic_scout.sources.config import SourcesConfig
from civic_scout.sources.schemas import DiscoveryMethod, SourceKind, SourceRole
from tests.conftest import NOW, make_source


@pytest.fixture
def scheduler() -> Scheduler:
    return Scheduler(ScoutConfig())


def src(name: str, **fields):
    return make_source(f"https://{name}.example.org", **fields)


class TestIsDue:
    """Due-for-scrape decisions."""

    def test_never_scraped_is_due(self, scheduler: Scheduler) -> None:
        assert scheduler.is_due(src("a"), NOW)

    def test_recently_scraped_not_due(self, scheduler: Scheduler) -> None:
        # weight 0.5 → 24h cadence
        source = src("a", weight=0.5, last_scraped=NOW - timedelta(hours=23))
        assert not scheduler.is_due(source, NOW)

    def test_due_at_exact_cadence(self, scheduler: Scheduler) -> None:
        source = src("a", weight=0.5, last_scraped=NOW - timedelta(hours=24))
        assert scheduler.is_due(source, NOW)

    def test_stored_cadence_wins(self, scheduler: Scheduler) -> None:
        # Backed-off cadence stored by the metrics step
        source = src("a", weight=0.5, cadence_hours=96, last_scraped=NOW - timedelta(hours=30))
        assert not scheduler.is_due(source, NOW)


class TestPlan:
    """Plan partitioning and ordering."""

    def test_orders_by_weight_then_oldest(self, scheduler: Scheduler) -> None:
        sources = [
            src("low", weight=0.3),
            src("old", weight=0.5, last_scraped=NOW - timedelta(days=10)),
            src("new", weight=0.5, last_scraped=NOW - timedelta(days=3)),
            src("high", weight=1.5, last_scraped=NOW - timedelta(days=1)),
            src("never", weight=0.5),
        ]
        plan = scheduler.plan(sources, NOW)

        assert [s.value for s in plan.tension_phase] == [
            "https://high.example.org",
            "https://never.example.org",
            "https://old.example.org",
            "https://new.example.org",
            "https://low.example.org",
        ]

    def test_partitions_by_role(self, scheduler: Scheduler) -> None:
        sources = [
            src("t", role=SourceRole.TENSION),
            src("r", role=SourceRole.RESPONSE),
            src("m", role=SourceRole.MIXED),
        ]
        plan = scheduler.plan(sources, NOW)

        assert {s.value for s in plan.tension_phase} == {
            "https://t.example.org",
            "https://m.example.org",
        }
        assert [s.value for s in plan.response_phase] == ["https://r.example.org"]
        assert plan.planned == 3

    def test_soft_pause_excludes_source(self, scheduler: Scheduler) -> None:
        paused = src("dead", weight=0.12, consecutive_empty_runs=5)
        plan = scheduler.plan([paused, src("ok")], NOW)

        assert plan.paused == [paused]
        assert paused not in plan.tension_phase
        assert paused.active

    def test_low_weight_without_streak_not_paused(self, scheduler: Scheduler) -> None:
        source = src("quiet", weight=0.12, consecutive_empty_runs=2)
        assert not scheduler.is_paused(source)

    def test_inactive_sources_skipped(self, scheduler: Scheduler) -> None:
        plan = scheduler.plan([src("off", active=False)], NOW)
        assert plan.planned == 0

    def test_query_and_social_sources_planned(self, scheduler: Scheduler) -> None:
        sources = [
            make_source("food shelf hours", kind=SourceKind.QUERY),
            make_source("powderhorn_fridge", kind=SourceKind.SOCIAL),
        ]
        assert scheduler.plan(sources, NOW).planned == 2


class TestExploration:
    """Exploration slots for stale low-weight sources."""

    def test_stale_low_weight_source_gets_slot(self, scheduler: Scheduler) -> None:
        due = [src(f"due{i}") for i in range(10)]
        stale = src(
            "stale",
            weight=0.2,
            cadence_hours=24 * 30,
            last_scraped=NOW - timedelta(days=15),
        )
        plan = scheduler.plan(due + [stale], NOW)

        assert plan.explored == [stale]
        assert stale in plan.tension_phase
        assert plan.planned == 11

    def test_slots_capped_by_ratio(self, scheduler: Scheduler) -> None:
        due = [src(f"due{i}") for i in range(5)]
        stale = [
            src(f"stale{i}", weight=0.2, cadence_hours=24 * 30,
                last_scraped=NOW - timedelta(days=15 + i))
            for i in range(3)
        ]
        plan = scheduler.plan(due + stale, NOW)

        # ceil(5 * 0.1) = 1 slot, oldest first
        assert [s.value for s in plan.explored] == ["https://stale2.example.org"]

    def test_lone_candidate_gets_one_slot(self, scheduler: Scheduler) -> None:
        stale = src("stale", weight=0.2, cadence_hours=24 * 30,
                    last_scraped=NOW - timedelta(days=15))
        assert scheduler.plan([stale], NOW).explored == [stale]

    def test_recently_scraped_not_explored(self, scheduler: Scheduler) -> None:
        due = [src(f"due{i}") for i in range(10)]
        fresh = src("fresh", weight=0.2, cadence_hours=24 * 30,
                    last_scraped=NOW - timedelta(days=5))
        assert scheduler.plan(due + [fresh], NOW).explored == []

    def test_paused_source_explored_when_stale(self, scheduler: Scheduler) -> None:
        paused = src("dead", weight=0.1, consecutive_empty_runs=5,
                     last_scraped=NOW - timedelta(days=20))
        plan = scheduler.plan([paused, src("ok")], NOW)

        assert plan.explored == [paused]
        assert paused in plan.tension_phase
        assert plan.paused == []

    def test_recently_paused_source_waits(self, scheduler: Scheduler) -> None:
        paused = src("dead", weight=0.1, consecutive_empty_runs=5,
                     last_scraped=NOW - timedelta(days=3))
        plan = scheduler.plan([paused], NOW)

        assert plan.explored == []
        assert plan.paused == [paused]


class TestPausedConvergence:
    """A paused source ends up rescraped and deactivated, not stuck."""

    def test_empty_paused_source_is_eventually_deactivated(
        self, scheduler: Scheduler, make_ctx
    ) -> None:
        config = ScoutConfig()
        source = src(
            "quiet",
            discovery_method=DiscoveryMethod.HASHTAG_DISCOVERY,
            weight=0.1,
            scrape_count=5,
            consecutive_empty_runs=5,
            cadence_hours=120,
            last_scraped=NOW - timedelta(days=1),
        )
        assert scheduler.is_paused(source)

        rescrapes = 0
        for day in range(1, 121):
            now = NOW + timedelta(days=day)
            ctx = make_ctx(started_at=now)
            planned = source in scheduler.plan([source], now).tension_phase
            if planned:
                rescrapes += 1
                ctx.record_attempt(source.canonical_key)

            update = compute_source_update(source, ctx, now, config, SourcesConfig())
            source = replace(
                source,
                weight=update.weight,
                cadence_hours=update.cadence_hours,
                scrape_count=update.scrape_count,
                consecutive_empty_runs=update.consecutive_empty_runs,
                last_scraped=now if planned else source.last_scraped,
                active=update.deactivate_reason is None,
            )
            if not source.active:
                break

        assert not source.active
        assert source.consecutive_empty_runs == config.deactivate_after_empty_runs
        assert rescrapes == 5
