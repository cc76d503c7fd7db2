"""Tests for the run-scoped similarity cache."""

import math
from datetime import timedelta
from unittest.mock import AsyncMock

import numpy as np
import pytest

from civic_scout.similarity.cache import (
    DedupDecision,
    SimilarityCache,
    batch_cosine_similarity,
    best_match,
    haversine_km,
)
from civic_scout.similarity.config import SimilarityConfig
from tests.conftest import NOW


def at_similarity(s: float) -> list[float]:
    """Unit vector with cosine similarity ``s`` to [1, 0]."""
    return [s, math.sqrt(1 - s * s)]


@pytest.fixture
def stub_embedder() -> AsyncMock:
    embedder = AsyncMock()
    embedder.embed = AsyncMock(return_value=[1.0, 0.0])
    return embedder


@pytest.fixture
def cache(stub_embedder: AsyncMock) -> SimilarityCache:
    cache = SimilarityCache(stub_embedder)
    cache.add("existing", [1.0, 0.0], created_at=NOW)
    return cache


class TestClassifyBands:
    """Duplicate, near-duplicate and unique bands."""

    def test_above_merge_threshold_is_duplicate(self, cache: SimilarityCache) -> None:
        """0.93 >= 0.92 is suppressed."""
        result = cache.classify(at_similarity(0.93), now=NOW)
        assert result.decision == DedupDecision.DUPLICATE
        assert result.match_id == "existing"
        assert result.similarity == pytest.approx(0.93)

    def test_gray_band_is_near_duplicate(self, cache: SimilarityCache) -> None:
        """0.87 falls in [0.85, 0.92) and is flagged."""
        result = cache.classify(at_similarity(0.87), now=NOW)
        assert result.decision == DedupDecision.NEAR_DUPLICATE
        assert result.match_id == "existing"

    def test_low_similarity_is_unique(self, cache: SimilarityCache) -> None:
        result = cache.classify(at_similarity(0.50), now=NOW)
        assert result.decision == DedupDecision.UNIQUE

    def test_exact_merge_threshold_is_duplicate(self, cache: SimilarityCache) -> None:
        result = cache.classify([1.0, 0.0], now=NOW)
        assert result.decision == DedupDecision.DUPLICATE

    def test_missing_embedding_is_unique(self, cache: SimilarityCache) -> None:
        assert cache.classify(None, now=NOW).decision == DedupDecision.UNIQUE

    def test_empty_cache_is_unique(self, stub_embedder: AsyncMock) -> None:
        cache = SimilarityCache(stub_embedder)
        assert cache.classify([1.0, 0.0], now=NOW).decision == DedupDecision.UNIQUE

    def test_custom_thresholds(self, stub_embedder: AsyncMock) -> None:
        config = SimilarityConfig(merge_threshold=0.99, near_duplicate_threshold=0.9)
        cache = SimilarityCache(stub_embedder, config)
        cache.add("a", [1.0, 0.0], created_at=NOW)
        assert cache.classify(at_similarity(0.95), now=NOW).decision == DedupDecision.NEAR_DUPLICATE

    def test_match_reports_source(self, stub_embedder: AsyncMock) -> None:
        cache = SimilarityCache(stub_embedder)
        cache.add("a", [1.0, 0.0], source_key="minneapolis:web:https://a.example.org", created_at=NOW)
        result = cache.classify([1.0, 0.0], now=NOW)
        assert result.match_source_key == "minneapolis:web:https://a.example.org"


class TestMixedDimensions:
    """Embeddings written by a different model."""

    def test_other_dimension_is_unique(self, cache: SimilarityCache) -> None:
        result = cache.classify([1.0, 0.0, 0.0], now=NOW)
        assert result.decision == DedupDecision.UNIQUE
        assert result.dimension_mismatch

    def test_mixed_load_compares_within_dimension(self, stub_embedder: AsyncMock) -> None:
        from civic_scout.signals.schemas import Signal, SignalKind

        def stored(signal_id: str, embedding: list[float]) -> Signal:
            return Signal(id=signal_id, city="x", kind=SignalKind.EVENT, title=signal_id,
                          body="", source_key="k", source_url="u", embedding=embedding,
                          created_at=NOW)

        cache = SimilarityCache(stub_embedder)
        assert cache.load([stored("old-model", [0.0, 0.0, 1.0]), stored("new-model", [1.0, 0.0])]) == 2
        assert len(cache) == 2

        result = cache.classify([1.0, 0.0], now=NOW)
        assert result.decision == DedupDecision.DUPLICATE
        assert result.match_id == "new-model"
        assert not result.dimension_mismatch


class TestComparisonWindow:
    """Only signals overlapping in time and geography are compared."""

    def test_old_signal_outside_window_ignored(self, stub_embedder: AsyncMock) -> None:
        cache = SimilarityCache(stub_embedder)
        cache.add("old", [1.0, 0.0], created_at=NOW - timedelta(days=31))
        assert cache.classify([1.0, 0.0], now=NOW).decision == DedupDecision.UNIQUE

    def test_distant_signal_ignored(self, stub_embedder: AsyncMock) -> None:
        cache = SimilarityCache(stub_embedder)
        # Minneapolis vs Chicago
        cache.add("far", [1.0, 0.0], latitude=41.88, longitude=-87.63, created_at=NOW)
        result = cache.classify([1.0, 0.0], latitude=44.98, longitude=-93.27, now=NOW)
        assert result.decision == DedupDecision.UNIQUE

    def test_nearby_signal_compared(self, stub_embedder: AsyncMock) -> None:
        cache = SimilarityCache(stub_embedder)
        # Minneapolis vs St. Paul
        cache.add("near", [1.0, 0.0], latitude=44.95, longitude=-93.09, created_at=NOW)
        result = cache.classify([1.0, 0.0], latitude=44.98, longitude=-93.27, now=NOW)
        assert result.decision == DedupDecision.DUPLICATE

    def test_ungeolocated_signal_always_compared(self, stub_embedder: AsyncMock) -> None:
        cache = SimilarityCache(stub_embedder)
        cache.add("nowhere", [1.0, 0.0], created_at=NOW)
        result = cache.classify([1.0, 0.0], latitude=41.88, longitude=-87.63, now=NOW)
        assert result.decision == DedupDecision.DUPLICATE


class TestGetOrCompute:
    """Embedding memo and fail-open behaviour."""

    @pytest.mark.asyncio
    async def test_memoizes_by_text(self, cache: SimilarityCache, stub_embedder: AsyncMock) -> None:
        first = await cache.get_or_compute("food shelf open")
        second = await cache.get_or_compute("food shelf open")

        assert first == second
        stub_embedder.embed.assert_awaited_once()
        assert cache.embed_calls == 1

    @pytest.mark.asyncio
    async def test_failure_returns_none(self, cache: SimilarityCache, stub_embedder: AsyncMock) -> None:
        stub_embedder.embed.side_effect = RuntimeError("model unavailable")

        assert await cache.get_or_compute("anything") is None
        assert cache.embed_failures == 1

    @pytest.mark.asyncio
    async def test_failure_not_memoized(self, cache: SimilarityCache, stub_embedder: AsyncMock) -> None:
        stub_embedder.embed.side_effect = [RuntimeError("blip"), [0.0, 1.0]]

        assert await cache.get_or_compute("retry me") is None
        assert await cache.get_or_compute("retry me") == [0.0, 1.0]


class TestHelpers:
    """Vector and distance helpers."""

    def test_is_near_duplicate(self, cache: SimilarityCache) -> None:
        existing = [[1.0, 0.0], [0.0, 1.0]]
        assert cache.is_near_duplicate(at_similarity(0.9), existing, 0.85)
        assert not cache.is_near_duplicate(at_similarity(0.8), [[1.0, 0.0]], 0.85)
        assert not cache.is_near_duplicate([1.0, 0.0], [], 0.85)
        assert not cache.is_near_duplicate([1.0, 0.0], [[1.0, 0.0, 0.0]], 0.85)

    def test_best_match(self) -> None:
        existing = np.array([[0.0, 1.0], [1.0, 0.0]])
        index, similarity = best_match(np.array([1.0, 0.0]), existing)
        assert index == 1
        assert similarity == pytest.approx(1.0)
        assert best_match(np.array([1.0, 0.0]), np.empty((0, 2))) is None

    def test_zero_vectors_score_zero(self) -> None:
        sims = batch_cosine_similarity(np.zeros(2), np.array([[1.0, 0.0]]))
        assert sims.tolist() == [0.0]
        sims = batch_cosine_similarity(np.array([1.0, 0.0]), np.array([[0.0, 0.0]]))
        assert sims.tolist() == [0.0]

    def test_haversine(self) -> None:
        # Minneapolis to St. Paul is roughly 15 km
        assert 10 < haversine_km(44.98, -93.27, 44.95, -93.09) < 20

    def test_load_skips_signals_without_embedding(self, stub_embedder: AsyncMock) -> None:
        from civic_scout.signals.schemas import Signal, SignalKind

        signals = [
            Signal(city="x", kind=SignalKind.EVENT, title="a", body="", source_key="k",
                   source_url="u", embedding=[1.0, 0.0], created_at=NOW),
            Signal(city="x", kind=SignalKind.EVENT, title="b", body="", source_key="k",
                   source_url="u", embedding=None, created_at=NOW),
        ]
        cache = SimilarityCache(stub_embedder)
        assert cache.load(signals) == 1
        assert len(cache) == 1


class TestSimilarityConfig:
    """Threshold validation."""

    def test_rejects_inverted_band(self) -> None:
        with pytest.raises(ValueError):
            SimilarityConfig(merge_threshold=0.8, near_duplicate_threshold=0.9)
