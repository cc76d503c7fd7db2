"""
Scout run configuration.

Every scheduling, weighting, discovery and expansion constant is a named,
bounded setting here (env prefix SCOUT_). A run reads its ScoutConfig once
and never mutates it.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ScoutConfig(BaseSettings):
    """Configuration for one city's scout runs."""

    model_config = SettingsConfigDict(
        env_prefix="SCOUT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Geo relevance: content from unknown URLs must mention one of these
    geo_terms: list[str] = Field(
        default_factory=list,
        description="Neighborhood and place names besides the city name",
    )

    # Concurrency
    max_concurrent_fetches: int = Field(default=8, ge=1, le=64)
    max_concurrent_extractions: int = Field(default=4, ge=1, le=32)
    search_results_per_query: int = Field(default=5, ge=1, le=20)
    posts_per_account: int = Field(default=10, ge=1, le=100)

    # Cadence
    cadence_scale_hours: float = Field(
        default=12.0,
        gt=0,
        description="cadence = scale / weight; a weight-1.0 source is revisited every 12h",
    )
    min_cadence_hours: float = Field(default=6.0, gt=0)
    max_cadence_hours: float = Field(default=168.0, gt=0)
    max_backoff_exponent: int = Field(
        default=4,
        ge=0,
        le=10,
        description="Failure backoff multiplies cadence by at most 2**exponent",
    )

    # Weight bounds and formula
    min_weight: float = Field(default=0.1, ge=0.0)
    max_weight: float = Field(default=2.0, gt=0.0)
    prior_strength: float = Field(
        default=3.0,
        gt=0,
        description="Pseudo-scrapes of prior yield blended into the observed yield",
    )
    max_yield_per_scrape: float = Field(default=2.0, gt=0)
    empty_penalty_after: int = Field(
        default=3,
        ge=1,
        description="Consecutive empty runs before the decay penalty kicks in",
    )
    empty_run_decay: float = Field(default=0.8, gt=0.0, le=1.0)
    recency_full_days: int = Field(default=30, ge=1)
    recency_floor: float = Field(default=0.5, ge=0.0, le=1.0)
    never_produced_factor: float = Field(default=0.7, ge=0.0, le=1.0)
    never_produced_after_scrapes: int = Field(default=3, ge=1)

    # Soft pause and deactivation
    pause_weight_floor: float = Field(default=0.15, ge=0.0)
    pause_after_empty_runs: int = Field(default=5, ge=1)
    deactivate_after_empty_runs: int = Field(default=10, ge=1)
    deactivate_query_after_empty_runs: int = Field(default=5, ge=1)

    # Exploration slots
    exploration_ratio: float = Field(default=0.1, ge=0.0, le=0.5)
    exploration_max_weight: float = Field(default=0.3, ge=0.0)
    exploration_stale_days: int = Field(default=14, ge=1)

    # Discovery caps
    max_discovery_searches: int = Field(default=3, ge=0)
    max_new_sources_per_run: int = Field(default=10, ge=0)
    max_reference_promotions: int = Field(default=5, ge=0)
    discovery_platforms: list[str] = Field(default_factory=lambda: ["instagram"])
    seed_topics: list[str] = Field(default_factory=list)
    posts_per_topic_search: int = Field(default=30, ge=1, le=200)

    # Expansion
    expansion_similarity_threshold: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Token-set Jaccard at or above which two queries are duplicates",
    )
    max_expansion_queries_per_run: int = Field(default=10, ge=0)
    expansion_lookback_hours: int = Field(default=24, ge=1)
    max_social_topics_from_expansion: int = Field(default=3, ge=0)

    # Run lock
    lock_stale_minutes: int = Field(default=30, ge=1)

    # Daily spend ceiling for delegated calls, in cents (0 = unlimited)
    daily_budget_cents: int = Field(default=0, ge=0)
    cost_extraction_cents: int = Field(default=1, ge=0)
    cost_search_cents: int = Field(default=1, ge=0)
    cost_social_cents: int = Field(default=2, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "ScoutConfig":
        if self.min_weight > self.max_weight:
            raise ValueError("min_weight must not exceed max_weight")
        if self.min_cadence_hours > self.max_cadence_hours:
            raise ValueError("min_cadence_hours must not exceed max_cadence_hours")
        return self
