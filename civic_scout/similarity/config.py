"""Similarity thresholds for signal deduplication."""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SimilarityConfig(BaseSettings):
    """
    Cosine similarity bands used by the SimilarityCache.

    - similarity >= merge_threshold: duplicate, suppressed
    - near_duplicate_threshold <= similarity < merge_threshold: stored, flagged
    - below: unique
    """

    model_config = SettingsConfigDict(
        env_prefix="SIMILARITY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    merge_threshold: float = Field(
        default=0.92,
        ge=0.0,
        le=1.0,
        description="At or above this similarity a candidate is suppressed",
    )
    near_duplicate_threshold: float = Field(
        default=0.85,
        ge=0.0,
        le=1.0,
        description="Lower bound of the stored-but-flagged band",
    )
    window_days: int = Field(
        default=30,
        ge=1,
        description="Only signals created within this many days are compared",
    )
    geo_radius_km: float = Field(
        default=50.0,
        gt=0.0,
        description="Signals farther apart than this never count as duplicates",
    )

    @model_validator(mode="after")
    def _check_band(self) -> "SimilarityConfig":
        if self.near_duplicate_threshold > self.merge_threshold:
            raise ValueError(
                "near_duplicate_threshold must not exceed merge_threshold"
            )
        return self
