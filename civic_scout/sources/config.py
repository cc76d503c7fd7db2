"""Configuration for newly created sources."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from civic_scout.sources.schemas import DiscoveryMethod


class SourcesConfig(BaseSettings):
    """Initial trust weights assigned when a source is first created.

    Discovered sources start below curated ones and must earn weight
    through yield.
    """

    model_config = SettingsConfigDict(
        env_prefix="SOURCES_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    curated_weight: float = Field(default=0.5, ge=0.0, le=2.0)
    gap_analysis_weight: float = Field(default=0.3, ge=0.0, le=2.0)
    signal_reference_weight: float = Field(default=0.3, ge=0.0, le=2.0)
    hashtag_discovery_weight: float = Field(default=0.3, ge=0.0, le=2.0)
    signal_expansion_weight: float = Field(
        default=0.2,
        ge=0.0,
        le=2.0,
        description="Expansion queries are speculative; lowest starting trust",
    )

    def initial_weight_for(self, method: DiscoveryMethod) -> float:
        """Starting weight for a source created by the given method."""
        return {
            DiscoveryMethod.CURATED: self.curated_weight,
            DiscoveryMethod.GAP_ANALYSIS: self.gap_analysis_weight,
            DiscoveryMethod.SIGNAL_REFERENCE: self.signal_reference_weight,
            DiscoveryMethod.HASHTAG_DISCOVERY: self.hashtag_discovery_weight,
            DiscoveryMethod.SIGNAL_EXPANSION: self.signal_expansion_weight,
        }[method]
