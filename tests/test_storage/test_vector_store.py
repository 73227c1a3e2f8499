"""Tests for the in-memory vector store."""

import pytest

from hybrid_rag.storage.schemas import VectorDocument, VectorSearchOptions
from hybrid_rag.storage.vector_store import InMemoryVectorStore, VectorStore


def _doc(doc_id: str, embedding, document_id: str = "doc1") -> VectorDocument:
    return VectorDocument(
        id=doc_id,
        content=f"content of {doc_id}",
        embedding=embedding,
        metadata={"document_id": document_id, "source": "manual.txt"},
    )


@pytest.fixture
def store() -> InMemoryVectorStore:
    store = InMemoryVectorStore()
    store.add_documents(
        [
            _doc("a", [1.0, 0.0, 0.0]),
            _doc("b", [0.7, 0.7, 0.0]),
            _doc("c", [0.0, 0.0, 1.0], document_id="doc2"),
        ]
    )
    return store


def test_satisfies_protocol(store: InMemoryVectorStore) -> None:
    assert isinstance(store, VectorStore)


def test_search_orders_by_cosine(store: InMemoryVectorStore) -> None:
    hits = store.search("query", [1.0, 0.0, 0.0])

    assert [h.id for h in hits] == ["a", "b", "c"]
    assert hits[0].score == pytest.approx(1.0)
    assert hits[0].metadata["source"] == "manual.txt"


def test_search_applies_top_k_and_min_score(store: InMemoryVectorStore) -> None:
    hits = store.search("query", [1.0, 0.0, 0.0], VectorSearchOptions(top_k=5, min_score=0.5))

    assert [h.id for h in hits] == ["a", "b"]

    assert len(store.search("query", [1.0, 0.0, 0.0], VectorSearchOptions(top_k=1))) == 1


def test_search_filters_by_document(store: InMemoryVectorStore) -> None:
    hits = store.search("query", [1.0, 0.0, 0.0], VectorSearchOptions(document_id="doc2"))

    assert [h.id for h in hits] == ["c"]


def test_mismatched_dimensions_are_skipped(store: InMemoryVectorStore) -> None:
    store.add_documents([_doc("d", [1.0, 0.0])])

    hits = store.search("query", [1.0, 0.0, 0.0])

    assert "d" not in {h.id for h in hits}


def test_empty_embedding_rejected(store: InMemoryVectorStore) -> None:
    with pytest.raises(ValueError):
        store.add_documents([_doc("e", [])])


def test_delete_document(store: InMemoryVectorStore) -> None:
    assert store.delete_document("doc1") == 2
    assert store.count() == 1
    assert store.get("a") is None


def test_clear(store: InMemoryVectorStore) -> None:
    store.clear()

    assert store.count() == 0
    assert store.search("query", [1.0, 0.0, 0.0]) == []
