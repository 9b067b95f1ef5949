"""Embedding abstractions for the enhanced documentation retriever."""

from __future__ import annotations

import asyncio
import re
from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt
from typing import Any

from langchain_core.embeddings import Embeddings

_TOKEN = re.compile(r"[a-z0-9][a-z0-9_.-]*")


class Embedder(ABC):
    """Embedder interface used by the semantic retriever."""

    @abstractmethod
    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed many documents."""

    @abstractmethod
    def embed_query(self, text: str) -> list[float]:
        """Embed one query."""

    async def aembed_documents(self, texts: list[str]) -> list[list[float]]:
        return await asyncio.to_thread(self.embed_documents, texts)

    async def aembed_query(self, text: str) -> list[float]:
        return await asyncio.to_thread(self.embed_query, text)


class HashingEmbedder(Embedder):
    """Deterministic feature-hashing embedding without external model calls.

    Used as the default enhanced-mode embedder and in tests. Unigrams and
    adjacent bigrams are hashed into ``dimension`` signed buckets and the
    vector is L2-normalized.
    """

    def __init__(self, dimension: int = 256) -> None:
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self.dimension = dimension

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        return self._embed(text)

    def _embed(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        tokens = _TOKEN.findall(text.lower())
        if not tokens:
            return vector

        features = tokens + [f"{left} {right}" for left, right in zip(tokens, tokens[1:])]
        for feature in features:
            digest = blake2b(feature.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


class LangChainEmbedder(Embedder):
    """Adapts any LangChain ``Embeddings`` implementation to ``Embedder``."""

    def __init__(self, embeddings: Embeddings) -> None:
        self._embeddings = embeddings

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [list(map(float, row)) for row in self._embeddings.embed_documents(texts)]

    def embed_query(self, text: str) -> list[float]:
        return [float(value) for value in self._embeddings.embed_query(text)]

    async def aembed_documents(self, texts: list[str]) -> list[list[float]]:
        rows = await self._embeddings.aembed_documents(texts)
        return [list(map(float, row)) for row in rows]

    async def aembed_query(self, text: str) -> list[float]:
        return [float(value) for value in await self._embeddings.aembed_query(text)]


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)


def as_embedder(candidate: Any) -> Embedder | None:
    """Coerce ``candidate`` into an ``Embedder`` when possible."""

    if candidate is None or isinstance(candidate, Embedder):
        return candidate
    if isinstance(candidate, Embeddings):
        return LangChainEmbedder(candidate)
    raise TypeError(f"Unsupported embedder type: {type(candidate).__name__}")
