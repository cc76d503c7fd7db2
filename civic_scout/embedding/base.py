"""Embedder protocol and an offline hashing implementation."""

import hashlib
import re
from typing import Protocol, runtime_checkable

import numpy as np

_TOKEN = re.compile(r"[a-z0-9]+")


@runtime_checkable
class Embedder(Protocol):
    """Anything that turns text into a dense vector."""

    async def embed(self, text: str) -> list[float]: ...


class HashingEmbedder:
    """Bag-of-words feature hashing into a fixed-size unit vector.

    Identical texts map to identical vectors and texts sharing most of
    their words score high cosine similarity, which is all mock runs and
    tests need.
    """

    def __init__(self, dim: int = 256) -> None:
        self.dim = dim

    async def embed(self, text: str) -> list[float]:
        vec = np.zeros(self.dim, dtype=np.float64)
        for token in _TOKEN.findall(text.lower()):
            digest = hashlib.md5(token.encode("utf-8")).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dim
            sign = 1.0 if digest[4] & 1 else -1.0
            vec[idx] += sign
        norm = np.linalg.norm(vec)
        if norm > 0:
            vec /= norm
        return vec.tolist()
