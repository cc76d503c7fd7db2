"""
Text embeddings for signal deduplication.

- Embedder: protocol consumed by the SimilarityCache
- HashingEmbedder: deterministic offline embedder for mock runs and tests
- EmbeddingService (civic_scout.embedding.service): transformer model with
  Redis caching; imported lazily because it pulls in torch
"""

from civic_scout.embedding.base import Embedder, HashingEmbedder
from civic_scout.embedding.config import EmbeddingConfig

__all__ = ["Embedder", "EmbeddingConfig", "HashingEmbedder"]
