"""Embedding-based near-duplicate detection for signal candidates."""

from civic_scout.similarity.cache import (
    DedupDecision,
    DedupResult,
    SimilarityCache,
    batch_cosine_similarity,
    best_match,
)
from civic_scout.similarity.config import SimilarityConfig

__all__ = [
    "DedupDecision",
    "DedupResult",
    "SimilarityCache",
    "SimilarityConfig",
    "batch_cosine_similarity",
    "best_match",
]
