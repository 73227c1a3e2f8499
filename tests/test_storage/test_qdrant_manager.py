"""Tests for QdrantVectorStore.

Runs qdrant-client in local in-memory mode so no server is required.
"""

import uuid
from typing import List

import pytest

from hybrid_rag.storage.qdrant_manager import QdrantVectorStore, point_id
from hybrid_rag.storage.schemas import VectorDocument, VectorSearchOptions
from hybrid_rag.utils.config import DatabaseConfig


@pytest.fixture
def db_config() -> DatabaseConfig:
    return DatabaseConfig(qdrant_location=":memory:", embedding_dimension=4)


@pytest.fixture
def qdrant_store(db_config: DatabaseConfig) -> QdrantVectorStore:
    store = QdrantVectorStore(config=db_config, collection="test_document_chunks")
    yield store
    store.close()


@pytest.fixture
def sample_documents() -> List[VectorDocument]:
    vectors = [
        [1.0, 0.0, 0.0, 0.0],
        [0.9, 0.1, 0.0, 0.0],
        [0.0, 1.0, 0.0, 0.0],
        [0.0, 0.0, 1.0, 0.0],
    ]
    return [
        VectorDocument(
            id=f"doc{i // 2}_chunk_{i}",
            content=f"Chunk {i} about satellite systems.",
            embedding=vector,
            metadata={"document_id": f"doc{i // 2}", "chunk_index": i, "source": "manual.txt"},
        )
        for i, vector in enumerate(vectors)
    ]


def test_point_id_is_stable() -> None:
    assert point_id("doc1_chunk_0") == point_id("doc1_chunk_0")
    assert point_id("doc1_chunk_0") != point_id("doc1_chunk_1")

    raw = str(uuid.uuid4())
    assert point_id(raw) == raw


def test_collection_created_on_first_add(
    qdrant_store: QdrantVectorStore, sample_documents: List[VectorDocument]
) -> None:
    assert qdrant_store.collection_exists() is False

    assert qdrant_store.add_documents(sample_documents) == 4

    assert qdrant_store.collection_exists() is True
    assert qdrant_store.count() == 4


def test_search_returns_chunk_ids_and_payload(
    qdrant_store: QdrantVectorStore, sample_documents: List[VectorDocument]
) -> None:
    qdrant_store.add_documents(sample_documents)

    hits = qdrant_store.search("satellite", [1.0, 0.0, 0.0, 0.0], VectorSearchOptions(top_k=2))

    assert [h.id for h in hits] == ["doc0_chunk_0", "doc0_chunk_1"]
    assert hits[0].content == "Chunk 0 about satellite systems."
    assert hits[0].metadata["source"] == "manual.txt"
    assert "content" not in hits[0].metadata
    assert hits[0].score == pytest.approx(1.0, abs=1e-5)


def test_search_filters_by_document(
    qdrant_store: QdrantVectorStore, sample_documents: List[VectorDocument]
) -> None:
    qdrant_store.add_documents(sample_documents)

    hits = qdrant_store.search(
        "satellite", [1.0, 0.0, 0.0, 0.0], VectorSearchOptions(top_k=10, document_id="doc1")
    )

    assert {h.id for h in hits} <= {"doc1_chunk_2", "doc1_chunk_3"}


def test_search_without_collection_is_empty(qdrant_store: QdrantVectorStore) -> None:
    assert qdrant_store.search("anything", [1.0, 0.0, 0.0, 0.0]) == []


def test_dimension_mismatch_rejected(qdrant_store: QdrantVectorStore) -> None:
    with pytest.raises(ValueError):
        qdrant_store.add_documents(
            [VectorDocument(id="x", content="x", embedding=[1.0, 0.0], metadata={})]
        )


def test_delete_document(
    qdrant_store: QdrantVectorStore, sample_documents: List[VectorDocument]
) -> None:
    qdrant_store.add_documents(sample_documents)

    assert qdrant_store.delete_document("doc0") == 2
    assert qdrant_store.count() == 2


def test_clear_recreates_empty_collection(
    qdrant_store: QdrantVectorStore, sample_documents: List[VectorDocument]
) -> None:
    qdrant_store.add_documents(sample_documents)

    qdrant_store.clear()

    assert qdrant_store.collection_exists() is True
    assert qdrant_store.count() == 0


def test_health_check(qdrant_store: QdrantVectorStore, sample_documents: List[VectorDocument]) -> None:
    healthy, _ = qdrant_store.health_check()
    assert healthy is False

    qdrant_store.add_documents(sample_documents)

    healthy, message = qdrant_store.health_check()
    assert healthy is True
    assert "healthy" in message
