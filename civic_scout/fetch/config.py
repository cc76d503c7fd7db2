"""Configuration for fetch collaborators."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FetchConfig(BaseSettings):
    """HTTP fetch settings (env prefix FETCH_)."""

    model_config = SettingsConfigDict(
        env_prefix="FETCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    timeout: float = Field(default=20.0, gt=0, description="Per-request timeout in seconds")
    max_retries: int = Field(default=2, ge=0, le=10)
    max_backoff_seconds: float = Field(default=15.0, ge=1.0)
    user_agent: str = Field(default="civic-scout/0.1 (+https://github.com/civic-scout)")
    max_page_chars: int = Field(
        default=50_000,
        ge=1_000,
        description="Extracted page text is truncated to this length",
    )
    max_feed_items: int = Field(default=20, ge=1, le=200)
