import asyncio

import pytest
from langchain_core.embeddings import DeterministicFakeEmbedding

from opti_context.docs.embedder import HashingEmbedder, LangChainEmbedder, as_embedder, cosine_similarity
from opti_context.docs.retriever import (
    KeywordDocumentationRetriever,
    SemanticDocumentationRetriever,
    select_retriever,
)
from opti_context.types import DocumentationItem, ProductId

CORPUS = [
    DocumentationItem(
        title="Content types",
        url="https://docs.example.com/content-types",
        products=(ProductId.CMS_PAAS,),
        content="Define page and block content types with typed properties.",
    ),
    DocumentationItem(
        title="MVC templates",
        url="https://docs.example.com/mvc",
        products=(ProductId.CMS_PAAS,),
        content="Render pages with controllers and Razor views.",
    ),
    DocumentationItem(
        title="Node SDK",
        url="https://docs.example.com/node-sdk",
        products=(ProductId.FEATURE_EXPERIMENTATION,),
        content="Create a user context and call decide for a flag.",
    ),
]


def test_keyword_retriever_filters_and_ranks() -> None:
    retriever = KeywordDocumentationRetriever(CORPUS)

    docs = asyncio.run(retriever.fetch([ProductId.CMS_PAAS], "block content types"))

    assert [doc.title for doc in docs] == ["Content types", "MVC templates"]
    assert docs[0].relevance > docs[1].relevance
    assert docs[1].relevance == 0.5
    assert CORPUS[0].relevance == 0.0


def test_keyword_retriever_without_products_or_query() -> None:
    docs = asyncio.run(KeywordDocumentationRetriever(CORPUS, top_k=2).fetch([], None))

    assert len(docs) == 2
    assert all(doc.relevance == 0.5 for doc in docs)


def test_default_catalog_has_commerce_code() -> None:
    docs = asyncio.run(KeywordDocumentationRetriever().fetch([ProductId.CONFIGURED_COMMERCE], "custom handler"))

    assert docs
    assert docs[0].title == "Handler chain pattern"
    assert all(ProductId.CONFIGURED_COMMERCE in doc.products for doc in docs)
    assert any("```" in doc.content for doc in docs)


def test_semantic_retriever_scores_by_similarity() -> None:
    retriever = SemanticDocumentationRetriever(HashingEmbedder(), CORPUS)
    asyncio.run(retriever.initialize())

    docs = asyncio.run(retriever.fetch([ProductId.CMS_PAAS, ProductId.FEATURE_EXPERIMENTATION], "decide flag user context"))

    assert retriever.mode == "enhanced"
    assert docs[0].title == "Node SDK"
    assert all(0.0 <= doc.relevance <= 1.0 for doc in docs)


def test_hashing_embedder_is_normalized_and_deterministic() -> None:
    embedder = HashingEmbedder(dimension=64)

    first = embedder.embed_query("handler chain ordering")
    second = embedder.embed_documents(["handler chain ordering"])[0]

    assert first == second
    assert cosine_similarity(first, second) == pytest.approx(1.0)
    assert embedder.embed_query("") == [0.0] * 64
    with pytest.raises(ValueError):
        HashingEmbedder(dimension=0)


def test_select_retriever_and_langchain_embeddings() -> None:
    assert select_retriever().mode == "basic"
    assert select_retriever(HashingEmbedder()).mode == "enhanced"

    adapted = as_embedder(DeterministicFakeEmbedding(size=16))
    assert isinstance(adapted, LangChainEmbedder)
    assert len(adapted.embed_query("cms blocks")) == 16

    retriever = select_retriever(DeterministicFakeEmbedding(size=16), CORPUS)
    docs = asyncio.run(retriever.fetch([ProductId.CMS_PAAS], "content types"))
    assert {doc.title for doc in docs} == {"Content types", "MVC templates"}

    with pytest.raises(TypeError):
        as_embedder("not an embedder")
