"""Supervisor coordination configuration.

All settings can be overridden via ``SUPERVISOR_*`` environment variables.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SupervisorConfig(BaseSettings):
    """How the supervisor defers feedback writes around scout runs."""

    model_config = SettingsConfigDict(
        env_prefix="SUPERVISOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    defer_base_seconds: float = Field(
        default=30.0,
        gt=0,
        description="First wait after finding a scout run in flight",
    )
    defer_max_seconds: float = Field(default=300.0, gt=0)
    max_defer_attempts: int = Field(
        default=6,
        ge=1,
        le=50,
        description="Checks before the feedback write is skipped until next audit",
    )
    lock_stale_minutes: int = Field(default=30, ge=1)
    penalty_per_issue: float = Field(default=0.15, ge=0.0, le=1.0)
    min_penalty: float = Field(default=0.1, ge=0.0, le=1.0)
