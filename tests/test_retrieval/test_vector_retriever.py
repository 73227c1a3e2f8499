"""Tests for VectorRetriever."""

from typing import List

import pytest

from hybrid_rag.retrieval.vector_retriever import VectorRetriever
from hybrid_rag.storage.schemas import VectorDocument
from hybrid_rag.storage.vector_store import InMemoryVectorStore
from hybrid_rag.utils.config import VectorSearchConfig
from hybrid_rag.utils.similarity import fallback_embedding


class KeywordEmbedder:
    """Two-dimensional embedding: (mentions orbit, mentions power)."""

    def embed(self, text: str) -> List[float]:
        lowered = text.lower()
        return [1.0 if "orbit" in lowered else 0.0, 1.0 if "power" in lowered else 0.1]


@pytest.fixture
def store() -> InMemoryVectorStore:
    store = InMemoryVectorStore()
    embedder = KeywordEmbedder()
    texts = {
        "c0": ("Orbit determination uses TLE sets.", "ops.pdf"),
        "c1": ("Power budget for eclipse.", None),
        "c2": ("Orbit raising needs power margin.", "ops.pdf"),
    }
    store.add_documents(
        [
            VectorDocument(
                id=doc_id,
                content=content,
                embedding=embedder.embed(content),
                metadata={"document_id": "doc1", **({"source": source} if source else {})},
            )
            for doc_id, (content, source) in texts.items()
        ]
    )
    return store


def test_retrieve_returns_ranked_chunks(store: InMemoryVectorStore) -> None:
    retriever = VectorRetriever(KeywordEmbedder(), store)

    chunks = retriever.retrieve("Tell me about the orbit", top_k=2)

    assert [c.id for c in chunks] == ["c0", "c2"]
    assert chunks[0].similarity >= chunks[1].similarity
    assert chunks[0].source == "ops.pdf"


def test_missing_source_is_unknown(store: InMemoryVectorStore) -> None:
    retriever = VectorRetriever(KeywordEmbedder(), store)

    chunks = retriever.retrieve("power", top_k=3)

    by_id = {c.id: c for c in chunks}
    assert by_id["c1"].source == "Unknown"


def test_min_score_from_config(store: InMemoryVectorStore) -> None:
    retriever = VectorRetriever(KeywordEmbedder(), store, VectorSearchConfig(min_score=0.9))

    chunks = retriever.retrieve("orbit")

    assert [c.id for c in chunks] == ["c0"]


def test_empty_question_rejected(store: InMemoryVectorStore) -> None:
    with pytest.raises(ValueError):
        VectorRetriever(KeywordEmbedder(), store).retrieve("   ")


class FailingEmbedder:
    def embed(self, text: str) -> List[float]:
        raise ConnectionError("embedding service down")


class EmptyEmbedder:
    def embed(self, text: str) -> List[float]:
        return []


@pytest.mark.parametrize("embedder", [FailingEmbedder(), EmptyEmbedder()])
def test_query_embedding_failure_uses_fallback(embedder) -> None:
    store = InMemoryVectorStore()
    store.add_documents(
        [
            VectorDocument(
                id="c0",
                content="Orbit determination uses TLE sets.",
                embedding=fallback_embedding("Orbit determination uses TLE sets.", 16),
                metadata={"source": "ops.pdf"},
            )
        ]
    )
    retriever = VectorRetriever(embedder, store, fallback_dimension=16)

    chunks = retriever.retrieve("Orbit determination uses TLE sets.")

    assert [c.id for c in chunks] == ["c0"]
    assert chunks[0].similarity == pytest.approx(1.0)
