"""
Embedding service configuration.

Model selection, device placement and Redis caching for the embeddings
used by signal deduplication.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EmbeddingConfig(BaseSettings):
    """
    Configuration for the embedding service.

    Settings can be overridden via environment variables prefixed with EMBEDDING_.
    """

    model_config = SettingsConfigDict(
        env_prefix="EMBEDDING_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    model_name: str = Field(
        default="sentence-transformers/all-MiniLM-L6-v2",
        description="HuggingFace model used for signal embeddings",
    )
    embedding_dim: int = Field(default=384, description="Output vector dimension")
    max_sequence_length: int = Field(
        default=256,
        ge=16,
        le=512,
        description="Token limit; embed text is title plus 500 body chars so truncation is rare",
    )
    device: Literal["auto", "cpu", "cuda", "mps"] = Field(
        default="auto",
        description="Device for model inference (auto detects best available)",
    )

    cache_enabled: bool = Field(default=True, description="Cache embeddings in Redis")
    cache_ttl_hours: int = Field(default=168, ge=1, description="Cache TTL in hours")
    cache_key_prefix: str = Field(default="scout:emb:")

    @property
    def cache_ttl_seconds(self) -> int:
        return self.cache_ttl_hours * 3600
