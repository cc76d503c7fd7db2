"""
Run-scoped embedding memo and cosine-similarity dedup.

The cache holds two things for one run:
- a memo from text to embedding, so the delegated embedding call happens
  at most once per distinct text
- the embeddings of signals already stored (loaded from the graph at run
  start, then appended as the run accepts new ones), which candidates are
  compared against

Embedding failures fail open: the caller gets ``None`` and treats the
candidate as unique.
"""

import hashlib
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterable

import numpy as np
import structlog

from civic_scout.embedding.base import Embedder
from civic_scout.signals.schemas import Signal
from civic_scout.similarity.config import SimilarityConfig

logger = structlog.get_logger(__name__)

EARTH_RADIUS_KM = 6371.0


class DedupDecision(str, Enum):
    UNIQUE = "unique"
    NEAR_DUPLICATE = "near_duplicate"
    DUPLICATE = "duplicate"


@dataclass
class DedupResult:
    """Band decision for one candidate.

    ``match_source_key`` is the source of the closest stored signal, which
    separates a re-scrape of the same source from a corroborating one.
    ``dimension_mismatch`` is set when stored signals exist but none share
    the candidate's embedding dimension (a different model wrote them).
    """

    decision: DedupDecision
    similarity: float = 0.0
    match_id: str | None = None
    match_source_key: str | None = None
    dimension_mismatch: bool = False


@dataclass
class _StoredEmbedding:
    signal_id: str
    source_key: str | None
    latitude: float | None
    longitude: float | None
    created_at: datetime | None


@dataclass
class _Bucket:
    """Stored embeddings sharing one dimension."""

    entries: list[_StoredEmbedding] = field(default_factory=list)
    vectors: list[np.ndarray] = field(default_factory=list)
    matrix: np.ndarray | None = None

    def get_matrix(self) -> np.ndarray:
        if self.matrix is None:
            self.matrix = np.vstack(self.vectors)
        return self.matrix


def batch_cosine_similarity(candidate: np.ndarray, existing: np.ndarray) -> np.ndarray:
    """
    Cosine similarity of one vector against each row of a matrix.

    Zero-norm rows score 0.0 instead of producing NaN.

    Args:
        candidate: (dim,) vector.
        existing: (n, dim) matrix.

    Returns:
        (n,) similarity array.
    """
    cand_norm = np.linalg.norm(candidate)
    if cand_norm == 0.0:
        return np.zeros(existing.shape[0], dtype=np.float64)
    row_norms = np.linalg.norm(existing, axis=1)
    row_norms = np.where(row_norms == 0, 1.0, row_norms)
    return (existing @ candidate) / (row_norms * cand_norm)


def best_match(candidate: np.ndarray, existing: np.ndarray) -> tuple[int, float] | None:
    """Index and similarity of the closest row, or None if nothing is comparable."""
    if existing.ndim != 2 or existing.shape[0] == 0 or existing.shape[1] != candidate.shape[0]:
        return None
    sims = batch_cosine_similarity(candidate, existing)
    index = int(np.argmax(sims))
    return index, float(sims[index])


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = phi2 - phi1
    dlmb = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


class SimilarityCache:
    """
    Embedding memo plus near-duplicate classifier for one run.

    Stored embeddings are kept per dimension. A candidate is only compared
    with vectors of its own dimension, so signals embedded by a different
    model read as unrelated instead of breaking the comparison.

    Usage:
        cache = SimilarityCache(embedder)
        cache.load(recent_signals)
        embedding = await cache.get_or_compute(candidate.embed_text())
        result = cache.classify(embedding, latitude=lat, longitude=lng)
        if result.decision != DedupDecision.DUPLICATE:
            ...
            cache.add(signal_id, embedding, source_key=key, latitude=lat, longitude=lng)
    """

    def __init__(
        self,
        embedder: Embedder,
        config: SimilarityConfig | None = None,
    ) -> None:
        self._embedder = embedder
        self._config = config or SimilarityConfig()
        self._memo: dict[str, list[float]] = {}
        self._buckets: dict[int, _Bucket] = {}
        self.embed_calls = 0
        self.embed_failures = 0

    @property
    def config(self) -> SimilarityConfig:
        return self._config

    def __len__(self) -> int:
        return sum(len(b.entries) for b in self._buckets.values())

    async def get_or_compute(self, text: str) -> list[float] | None:
        """Return the memoized embedding for text, computing it on a miss.

        Returns None when the embedder fails.
        """
        key = hashlib.sha256(text.encode("utf-8")).hexdigest()
        cached = self._memo.get(key)
        if cached is not None:
            return cached

        self.embed_calls += 1
        try:
            embedding = await self._embedder.embed(text)
        except Exception as e:
            self.embed_failures += 1
            logger.warning("Embedding failed, treating as unique", error=str(e))
            return None

        self._memo[key] = embedding
        return embedding

    def is_near_duplicate(
        self,
        candidate: list[float] | np.ndarray,
        existing: list[list[float]] | np.ndarray,
        threshold: float,
    ) -> bool:
        """True if candidate's cosine similarity to any existing vector reaches threshold.

        The boolean form of the comparison ``classify`` makes; vectors of a
        different dimension never match.
        """
        match = best_match(
            np.asarray(candidate, dtype=np.float64),
            np.asarray(existing, dtype=np.float64),
        )
        return match is not None and match[1] >= threshold

    def classify(
        self,
        embedding: list[float] | None,
        *,
        latitude: float | None = None,
        longitude: float | None = None,
        now: datetime | None = None,
    ) -> DedupResult:
        """Place a candidate in the duplicate, near-duplicate or unique band.

        Only stored signals inside the time window and geo radius are
        compared. A missing embedding is always unique.
        """
        if embedding is None or not self._buckets:
            return DedupResult(DedupDecision.UNIQUE)

        bucket = self._buckets.get(len(embedding))
        if bucket is None:
            logger.debug("No stored embeddings share dimension", dimension=len(embedding))
            return DedupResult(DedupDecision.UNIQUE, dimension_mismatch=True)

        indices = self._overlapping(bucket, latitude, longitude, now or datetime.now(timezone.utc))
        if not indices:
            return DedupResult(DedupDecision.UNIQUE)

        match = best_match(np.asarray(embedding, dtype=np.float64), bucket.get_matrix()[indices])
        if match is None:
            return DedupResult(DedupDecision.UNIQUE)
        index, similarity = match
        entry = bucket.entries[indices[index]]

        if similarity >= self._config.merge_threshold:
            decision = DedupDecision.DUPLICATE
        elif similarity >= self._config.near_duplicate_threshold:
            decision = DedupDecision.NEAR_DUPLICATE
        else:
            decision = DedupDecision.UNIQUE
        return DedupResult(decision, similarity, entry.signal_id, entry.source_key)

    def add(
        self,
        signal_id: str,
        embedding: list[float],
        *,
        source_key: str | None = None,
        latitude: float | None = None,
        longitude: float | None = None,
        created_at: datetime | None = None,
    ) -> None:
        """Register a stored signal so later candidates compare against it."""
        if embedding is None or len(embedding) == 0:
            return
        bucket = self._buckets.setdefault(len(embedding), _Bucket())
        bucket.entries.append(
            _StoredEmbedding(signal_id, source_key, latitude, longitude, created_at)
        )
        bucket.vectors.append(np.asarray(embedding, dtype=np.float64))
        bucket.matrix = None

    def load(self, signals: Iterable[Signal]) -> int:
        """Seed the cache with previously stored signals. Returns count loaded."""
        loaded = 0
        for signal in signals:
            if signal.embedding is None or len(signal.embedding) == 0:
                continue
            self.add(
                signal.id,
                signal.embedding,
                source_key=signal.source_key,
                latitude=signal.latitude,
                longitude=signal.longitude,
                created_at=signal.created_at,
            )
            loaded += 1
        if len(self._buckets) > 1:
            logger.warning(
                "Stored embeddings have mixed dimensions",
                dimensions=sorted(self._buckets),
            )
        return loaded

    def _overlapping(
        self,
        bucket: _Bucket,
        latitude: float | None,
        longitude: float | None,
        now: datetime,
    ) -> list[int]:
        cutoff = now - timedelta(days=self._config.window_days)
        radius = self._config.geo_radius_km
        indices = []
        for i, entry in enumerate(bucket.entries):
            if entry.created_at is not None and entry.created_at < cutoff:
                continue
            if (
                latitude is not None
                and longitude is not None
                and entry.latitude is not None
                and entry.longitude is not None
                and haversine_km(latitude, longitude, entry.latitude, entry.longitude) > radius
            ):
                continue
            indices.append(i)
        return indices
