"""Tests for the hashing embedder and the transformer EmbeddingService."""

import json
from unittest.mock import AsyncMock, patch

import numpy as np
import pytest
import redis.asyncio as redis

from civic_scout.embedding.base import HashingEmbedder
from civic_scout.embedding.config import EmbeddingConfig
from civic_scout.embedding.service import EmbeddingService


class TestHashingEmbedder:
    """Deterministic bag-of-words vectors."""

    @pytest.mark.asyncio
    async def test_deterministic_unit_vectors(self) -> None:
        embedder = HashingEmbedder(dim=64)
        first = await embedder.embed("Free groceries at the community center")
        second = await embedder.embed("free groceries at the community center")

        assert first == second
        assert len(first) == 64
        assert np.linalg.norm(first) == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_empty_text_is_zero(self) -> None:
        vector = await HashingEmbedder(dim=8).embed("")
        assert vector == [0.0] * 8

    @pytest.mark.asyncio
    async def test_overlap_scores_higher(self) -> None:
        embedder = HashingEmbedder()
        base = np.array(await embedder.embed("cleanup at powderhorn park saturday morning"))
        near = np.array(await embedder.embed("cleanup at powderhorn park saturday"))
        far = np.array(await embedder.embed("tenant union meeting about rent"))
        assert base @ near > base @ far


class TestEmbeddingService:
    """Caching and lazy loading around the transformer model."""

    def test_lazy_initialization(self) -> None:
        service = EmbeddingService(config=EmbeddingConfig(cache_enabled=False))
        assert service._model is None

    @pytest.mark.asyncio
    async def test_empty_text_skips_model(self) -> None:
        service = EmbeddingService(config=EmbeddingConfig(cache_enabled=False))
        with patch.object(service, "_embed_sync") as embed_sync:
            vector = await service.embed("   ")
        embed_sync.assert_not_called()
        assert vector == [0.0] * 384

    @pytest.mark.asyncio
    async def test_cache_hit_skips_model(self) -> None:
        client = AsyncMock()
        client.get.return_value = json.dumps([0.1, 0.2])
        service = EmbeddingService(redis_client=client)

        with patch.object(service, "_embed_sync") as embed_sync:
            assert await service.embed("food shelf") == [0.1, 0.2]
        embed_sync.assert_not_called()

    @pytest.mark.asyncio
    async def test_cache_miss_computes_and_stores(self) -> None:
        client = AsyncMock()
        client.get.return_value = None
        service = EmbeddingService(redis_client=client)

        with patch.object(service, "_embed_sync", return_value=[0.5, 0.5]):
            assert await service.embed("food shelf") == [0.5, 0.5]

        key, ttl, value = client.setex.call_args[0]
        assert key.startswith("scout:emb:")
        assert ttl == 168 * 3600
        assert json.loads(value) == [0.5, 0.5]

    @pytest.mark.asyncio
    async def test_cache_errors_fall_through(self) -> None:
        client = AsyncMock()
        client.get.side_effect = redis.RedisError("down")
        client.setex.side_effect = redis.RedisError("down")
        service = EmbeddingService(redis_client=client)

        with patch.object(service, "_embed_sync", return_value=[1.0]):
            assert await service.embed("food shelf") == [1.0]

    @pytest.mark.asyncio
    async def test_close_releases_client(self) -> None:
        client = AsyncMock()
        service = EmbeddingService(redis_client=client)
        await service.close()
        await service.close()
        client.aclose.assert_awaited_once()
