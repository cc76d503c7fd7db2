"""Configuration for the LLM extractor."""

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class ExtractionConfig(BaseSettings):
    """Settings for LLM-backed signal extraction (env prefix EXTRACTION_)."""

    model_config = SettingsConfigDict(
        env_prefix="EXTRACTION_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    anthropic_api_key: SecretStr | None = Field(
        default=None,
        description="Falls back to the global ANTHROPIC_API_KEY when unset",
    )
    model: str = Field(default="claude-3-5-haiku-latest")
    max_tokens: int = Field(default=2048, ge=256, le=8192)
    timeout: float = Field(default=60.0, gt=0)
    max_input_chars: int = Field(
        default=30_000,
        ge=1_000,
        description="Page text beyond this is truncated before prompting",
    )
    max_implied_queries: int = Field(default=5, ge=0, le=20)
    min_confidence: float = Field(
        default=0.4,
        ge=0.0,
        le=1.0,
        description="Candidates below this confidence are dropped",
    )
    circuit_failure_threshold: int = Field(default=5, ge=1)
    circuit_recovery_timeout: float = Field(default=120.0, gt=0)
