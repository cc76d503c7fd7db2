"""Source weight and cadence formulas.

Weight is a smoothed signal yield: observed signals per scrape blended
with the source's starting trust, decayed for long empty streaks and for
sources that have gone quiet, then scaled by the supervisor's quality
penalty. Cadence is inversely proportional to weight.
"""

from datetime import datetime

from civic_scout.pipeline.config import ScoutConfig


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def recency_factor(
    last_produced_signal: datetime | None,
    scrape_count: int,
    now: datetime,
    config: ScoutConfig,
) -> float:
    """1.0 for recently productive sources, decaying linearly toward the floor."""
    if last_produced_signal is None:
        if scrape_count >= config.never_produced_after_scrapes:
            return config.never_produced_factor
        return 1.0
    days = (now - last_produced_signal).total_seconds() / 86400
    full = config.recency_full_days
    if days <= full:
        return 1.0
    # Reaches the floor at twelve times the full window (~a year by default)
    decay = (days - full) / (11 * full)
    return max(config.recency_floor, 1.0 - (1.0 - config.recency_floor) * decay)


def compute_weight(
    *,
    signals_produced: int,
    scrape_count: int,
    consecutive_empty_runs: int,
    last_produced_signal: datetime | None,
    prior: float,
    quality_penalty: float,
    now: datetime,
    config: ScoutConfig,
) -> float:
    """Weight from a source's full scrape history.

    ``prior`` is the starting weight for the source's discovery method;
    with no scrapes the result is the prior itself (times penalty).
    """
    k = config.prior_strength
    observed = 0.0
    if scrape_count > 0:
        observed = min(signals_produced / scrape_count, config.max_yield_per_scrape)
    weight = (observed * scrape_count + prior * k) / (scrape_count + k)

    if consecutive_empty_runs >= config.empty_penalty_after:
        streak = consecutive_empty_runs - config.empty_penalty_after + 1
        weight *= config.empty_run_decay ** streak

    weight *= recency_factor(last_produced_signal, scrape_count, now, config)
    weight *= quality_penalty
    return clamp(weight, config.min_weight, config.max_weight)


def cadence_for_weight(weight: float, config: ScoutConfig) -> float:
    """Hours between scrapes; strictly decreasing in weight until the floor."""
    if weight <= 0:
        return config.max_cadence_hours
    return clamp(
        config.cadence_scale_hours / weight,
        config.min_cadence_hours,
        config.max_cadence_hours,
    )


def cadence_with_backoff(weight: float, consecutive_failures: int, config: ScoutConfig) -> float:
    """Cadence doubled per consecutive failure, up to the configured exponent."""
    exponent = min(max(consecutive_failures, 0), config.max_backoff_exponent)
    return cadence_for_weight(weight, config) * (2**exponent)
