"""Documentation retrievers behind a shared async contract."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from typing import Any, Protocol

from opti_context.docs.catalog import DEFAULT_DOCUMENTATION
from opti_context.docs.embedder import Embedder, as_embedder, cosine_similarity
from opti_context.types import DocumentationItem, ProductId

LOGGER = logging.getLogger(__name__)

_WORD = re.compile(r"[a-z0-9]+")
_STOPWORDS = frozenset(
    {"a", "an", "and", "the", "to", "of", "in", "on", "for", "how", "do", "i", "is", "my", "with", "what", "see"}
)


class DocumentationRetriever(Protocol):
    """Fetches documentation for products; may return an empty list."""

    mode: str

    async def fetch(
        self, products: Sequence[ProductId], query: str | None = None
    ) -> list[DocumentationItem]:
        """Return documentation sorted by relevance, highest first."""


def _terms(text: str) -> set[str]:
    return {word for word in _WORD.findall(text.lower()) if word not in _STOPWORDS}


def _product_filter(
    corpus: Iterable[DocumentationItem], products: Sequence[ProductId]
) -> list[DocumentationItem]:
    if not products:
        return list(corpus)
    wanted = set(products)
    return [item for item in corpus if wanted.intersection(item.products)]


def _scored(item: DocumentationItem, relevance: float) -> DocumentationItem:
    return DocumentationItem(
        title=item.title,
        content=item.content,
        url=item.url,
        relevance=round(min(max(relevance, 0.0), 1.0), 4),
        products=item.products,
        last_updated=item.last_updated,
    )


class KeywordDocumentationRetriever:
    """Basic mode: product filter plus lexical overlap with the query.

    Documents for a requested product start from a base score; query terms
    found in the title or body raise it towards 1.0.
    """

    mode = "basic"

    def __init__(
        self,
        corpus: Sequence[DocumentationItem] | None = None,
        *,
        base_relevance: float = 0.5,
        top_k: int = 5,
    ) -> None:
        self.corpus = list(corpus if corpus is not None else DEFAULT_DOCUMENTATION)
        self.base_relevance = base_relevance
        self.top_k = top_k

    async def fetch(
        self, products: Sequence[ProductId], query: str | None = None
    ) -> list[DocumentationItem]:
        candidates = _product_filter(self.corpus, products)
        query_terms = _terms(query or "")

        scored: list[DocumentationItem] = []
        for item in candidates:
            if query_terms:
                doc_terms = _terms(f"{item.title} {item.content}")
                overlap = len(query_terms & doc_terms) / len(query_terms)
            else:
                overlap = 0.0
            scored.append(_scored(item, self.base_relevance + (1.0 - self.base_relevance) * overlap))

        scored.sort(key=lambda doc: (-doc.relevance, doc.title))
        LOGGER.debug("Keyword retrieval returned %d documents", len(scored[: self.top_k]))
        return scored[: self.top_k]


class SemanticDocumentationRetriever:
    """Enhanced mode: cosine similarity between query and document embeddings."""

    mode = "enhanced"

    def __init__(
        self,
        embedder: Embedder,
        corpus: Sequence[DocumentationItem] | None = None,
        *,
        top_k: int = 5,
    ) -> None:
        self.embedder = embedder
        self.corpus = list(corpus if corpus is not None else DEFAULT_DOCUMENTATION)
        self.top_k = top_k
        self._vectors: dict[str, list[float]] = {}

    async def initialize(self) -> None:
        texts = [f"{item.title}\n{item.content}" for item in self.corpus]
        vectors = await self.embedder.aembed_documents(texts)
        if len(vectors) != len(self.corpus):
            raise ValueError("embedder returned a different number of vectors than documents")
        self._vectors = {item.url: vector for item, vector in zip(self.corpus, vectors, strict=True)}
        LOGGER.debug("Embedded %d documentation entries", len(self._vectors))

    async def fetch(
        self, products: Sequence[ProductId], query: str | None = None
    ) -> list[DocumentationItem]:
        if not self._vectors:
            await self.initialize()
        candidates = _product_filter(self.corpus, products)
        if not query:
            return [_scored(item, 0.5) for item in candidates[: self.top_k]]

        query_vector = await self.embedder.aembed_query(query)
        scored = [
            _scored(item, cosine_similarity(query_vector, self._vectors.get(item.url, [])))
            for item in candidates
        ]
        scored.sort(key=lambda doc: (-doc.relevance, doc.title))
        return scored[: self.top_k]


def select_retriever(
    embedder: Any = None,
    corpus: Sequence[DocumentationItem] | None = None,
) -> DocumentationRetriever:
    """Pick the enhanced retriever when an embedder is available.

    ``embedder`` may be an ``Embedder`` or any LangChain ``Embeddings``.
    """

    resolved = as_embedder(embedder)
    if resolved is not None:
        return SemanticDocumentationRetriever(resolved, corpus)
    return KeywordDocumentationRetriever(corpus)
