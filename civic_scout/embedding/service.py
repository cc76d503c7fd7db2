"""
Transformer embedding service for signal text.

- Lazy model loading on first embed call
- Automatic device detection (CUDA > MPS > CPU)
- Attention-masked mean pooling, L2-normalized output
- Redis caching keyed by content hash, shared across runs
"""

import asyncio
import hashlib
import json
from typing import Any

import redis.asyncio as redis
import structlog
import torch
from transformers import AutoModel, AutoTokenizer

from civic_scout.embedding.config import EmbeddingConfig

logger = structlog.get_logger(__name__)


class EmbeddingService:
    """
    Generates sentence embeddings with a HuggingFace encoder.

    Model inference runs in a worker thread so the event loop keeps
    serving fetches while a batch of candidates is embedded.

    Usage:
        service = EmbeddingService(redis_client=redis.from_url(url))
        vector = await service.embed("Food shelf open Saturday at Powderhorn Park")
    """

    def __init__(
        self,
        config: EmbeddingConfig | None = None,
        redis_client: redis.Redis | None = None,
    ) -> None:
        self._config = config or EmbeddingConfig()
        self._redis = redis_client
        self._model: Any = None
        self._tokenizer: Any = None
        self._device: torch.device | None = None
        self._lock = asyncio.Lock()

    def _detect_device(self) -> torch.device:
        if self._device is not None:
            return self._device

        if self._config.device != "auto":
            self._device = torch.device(self._config.device)
        elif torch.cuda.is_available():
            self._device = torch.device("cuda")
        elif torch.backends.mps.is_available():
            self._device = torch.device("mps")
        else:
            self._device = torch.device("cpu")

        logger.info("Embedding device selected", device=str(self._device))
        return self._device

    def _initialize(self) -> None:
        if self._model is not None:
            return

        device = self._detect_device()
        logger.info("Loading embedding model", model=self._config.model_name)
        self._tokenizer = AutoTokenizer.from_pretrained(
            self._config.model_name,
            model_max_length=self._config.max_sequence_length,
        )
        model = AutoModel.from_pretrained(self._config.model_name)
        model.to(device)
        model.eval()
        self._model = model

    def _cache_key(self, text: str) -> str:
        digest = hashlib.sha256(text.encode("utf-8")).hexdigest()[:32]
        return f"{self._config.cache_key_prefix}{digest}"

    async def _get_cached(self, text: str) -> list[float] | None:
        if not self._config.cache_enabled or not self._redis:
            return None
        try:
            cached = await self._redis.get(self._cache_key(text))
        except redis.RedisError as e:
            logger.warning("Embedding cache read failed", error=str(e))
            return None
        return json.loads(cached) if cached else None

    async def _set_cached(self, text: str, embedding: list[float]) -> None:
        if not self._config.cache_enabled or not self._redis:
            return
        try:
            await self._redis.setex(
                self._cache_key(text),
                self._config.cache_ttl_seconds,
                json.dumps(embedding),
            )
        except redis.RedisError as e:
            logger.warning("Embedding cache write failed", error=str(e))

    def _embed_sync(self, text: str) -> list[float]:
        self._initialize()
        device = self._detect_device()

        inputs = self._tokenizer(
            text,
            return_tensors="pt",
            truncation=True,
            max_length=self._config.max_sequence_length,
            padding=True,
        )
        inputs = {k: v.to(device) for k, v in inputs.items()}

        with torch.no_grad():
            outputs = self._model(**inputs)

        token_embeddings = outputs.last_hidden_state
        mask = inputs["attention_mask"].unsqueeze(-1).expand(token_embeddings.size()).float()
        summed = torch.sum(token_embeddings * mask, dim=1)
        counts = torch.clamp(mask.sum(dim=1), min=1e-9)
        pooled = torch.nn.functional.normalize(summed / counts, p=2, dim=1)
        return pooled.cpu().numpy()[0].tolist()

    async def embed(self, text: str) -> list[float]:
        """Embed one text, consulting the Redis cache first."""
        if not text.strip():
            return [0.0] * self._config.embedding_dim

        cached = await self._get_cached(text)
        if cached is not None:
            return cached

        # One inference at a time; the model is not re-entrant across threads
        async with self._lock:
            embedding = await asyncio.to_thread(self._embed_sync, text)

        await self._set_cached(text, embedding)
        return embedding

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
