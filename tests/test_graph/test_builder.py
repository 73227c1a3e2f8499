"""Tests for GraphBuilder."""

from typing import Dict, List
from unittest.mock import Mock

import pytest

from hybrid_rag.extraction.graph_extractor import GraphExtractor
from hybrid_rag.extraction.models import (
    EntityExtractionResult,
    ExtractedEntity,
    ExtractedRelationship,
)
from hybrid_rag.graph.builder import GraphBuilder, context_window
from hybrid_rag.storage.graph_store import InMemoryGraphStore
from hybrid_rag.storage.schemas import Document, NodeType, RelationshipSpec
from hybrid_rag.utils.config import GraphConfig


def _entity(chunk: str, text: str, entity_type: str = "ORGANIZATION", confidence: float = 0.8) -> ExtractedEntity:
    start = chunk.index(text)
    return ExtractedEntity(
        text=text,
        type=entity_type,
        start_offset=start,
        end_offset=start + len(text),
        confidence=confidence,
    )


def _extractor(results: Dict[str, EntityExtractionResult]) -> Mock:
    extractor = Mock(spec=GraphExtractor)
    extractor.extract.side_effect = lambda text, document_id, chunk_index=None: results.get(
        text, EntityExtractionResult()
    )
    return extractor


CHUNK_0 = "Acme Corp signed a partnership agreement with Globex last spring."
CHUNK_1 = "Globex later moved its headquarters to Springfield."


@pytest.fixture
def store() -> InMemoryGraphStore:
    return InMemoryGraphStore()


@pytest.fixture
def document() -> Document:
    return Document(
        id="doc1",
        name="report.txt",
        content=CHUNK_0 + " " + CHUNK_1,
        chunks=[CHUNK_0, CHUNK_1],
        metadata={"author": "Analyst"},
    )


@pytest.fixture
def results() -> Dict[str, EntityExtractionResult]:
    return {
        CHUNK_0: EntityExtractionResult(
            entities=[_entity(CHUNK_0, "Acme Corp"), _entity(CHUNK_0, "Globex")],
            relationships=[
                ExtractedRelationship(
                    source_entity="Acme Corp",
                    target_entity="Globex",
                    relationship_type="PARTNERS_WITH",
                    confidence=0.7,
                    context="signed a partnership agreement",
                ),
                ExtractedRelationship(
                    source_entity="Globex",
                    target_entity="Springfield",
                    relationship_type="LOCATED_IN",
                ),
            ],
        ),
        CHUNK_1: EntityExtractionResult(
            entities=[_entity(CHUNK_1, "Globex"), _entity(CHUNK_1, "Springfield", "LOCATION")],
            relationships=[
                ExtractedRelationship(
                    source_entity="Globex",
                    target_entity="Springfield",
                    relationship_type="LOCATED_IN",
                    confidence=0.9,
                ),
            ],
        ),
    }


def test_context_window_is_clipped() -> None:
    assert context_window("abcdefghij", 2, 4, 1) == "bcde"
    assert context_window("abcdefghij", 0, 3, 50) == "abcdefghij"


def test_builds_document_sections_and_hierarchy(store, document, results) -> None:
    structure = GraphBuilder(store, _extractor(results)).build_graph(document)

    doc_props = structure.document_node.properties
    assert doc_props["title"] == "report.txt"
    assert doc_props["chunk_count"] == 2
    assert doc_props["document_id"] == "doc1"
    assert doc_props["author"] == "Analyst"

    assert [s.properties["chunk_index"] for s in structure.sections] == [0, 1]
    assert structure.sections[0].labels == ["Section", "Chunk"]
    assert structure.sections[1].properties["word_count"] == len(CHUNK_1.split())

    contains = [r for r in structure.relationships if r.type == "CONTAINS"]
    assert len(contains) == 2
    assert all(r.confidence == 1.0 for r in contains)

    assert [s.title for s in structure.hierarchy.sections] == ["Section 1", "Section 2"]
    assert all(s.parent == structure.document_node.id for s in structure.hierarchy.sections)


def test_content_preview_is_truncated(store, document, results) -> None:
    builder = GraphBuilder(store, _extractor(results), config=GraphConfig(content_preview_chars=10))

    structure = builder.build_graph(document)

    assert structure.document_node.properties["content"] == document.content[:10]


def test_entities_get_mentions_with_context(store, document, results) -> None:
    structure = GraphBuilder(store, _extractor(results)).build_graph(document)

    assert [e.properties["text"] for e in structure.entities] == [
        "Acme Corp",
        "Globex",
        "Globex",
        "Springfield",
    ]
    assert structure.entities[0].labels == ["Entity", "ORGANIZATION"]

    mentions = [r for r in structure.relationships if r.type == "MENTIONS"]
    assert len(mentions) == 4
    assert mentions[0].properties["context"] == CHUNK_0[: len("Acme Corp") + 50]
    assert mentions[0].confidence == pytest.approx(0.8)


def test_relationships_resolve_against_entities_created_so_far(store, document, results) -> None:
    structure = GraphBuilder(store, _extractor(results)).build_graph(document)

    typed = [r for r in structure.relationships if r.type not in ("CONTAINS", "MENTIONS")]
    assert [r.type for r in typed] == ["PARTNERS_WITH", "LOCATED_IN"]

    partners, located = typed
    assert partners.properties["extracted_from"] == "chunk_0"
    assert partners.properties["context"] == "signed a partnership agreement"

    # Chunk 0's LOCATED_IN named Springfield before it existed and was dropped;
    # chunk 1's edge starts at the first Globex node.
    first_globex = structure.entities[1]
    assert located.source_node_id == first_globex.id
    assert located.target_node_id == structure.entities[3].id
    assert located.properties["extracted_from"] == "chunk_1"


def test_entities_annotated_with_canonical_form(store) -> None:
    chunk = "Acme Corporation and Acme Corporatoin are the same firm."
    results = {
        chunk: EntityExtractionResult(
            entities=[
                _entity(chunk, "Acme Corporation", confidence=0.9),
                _entity(chunk, "Acme Corporatoin", confidence=0.6),
            ]
        )
    }
    document = Document(id="doc2", name="a.txt", content=chunk, chunks=[chunk])

    structure = GraphBuilder(store, _extractor(results)).build_graph(document)

    assert len(structure.resolution.resolved_entities) == 1
    canonical_ids = {e.properties["canonical_id"] for e in structure.entities}
    assert canonical_ids == {structure.resolution.resolved_entities[0].id}
    assert all(e.properties["canonical_name"] == "Acme Corporation" for e in structure.entities)
    assert store.get_node(structure.entities[1].id).properties["canonical_name"] == "Acme Corporation"


def test_annotation_can_be_disabled(store, document, results) -> None:
    builder = GraphBuilder(
        store, _extractor(results), config=GraphConfig(annotate_canonical_entities=False)
    )

    structure = builder.build_graph(document)

    assert all("canonical_id" not in e.properties for e in structure.entities)
    assert structure.resolution is not None


def test_document_node_failure_aborts(document, results) -> None:
    store = Mock()
    store.create_node.side_effect = ConnectionError("store down")

    with pytest.raises(RuntimeError):
        GraphBuilder(store, _extractor(results)).build_graph(document)


class RejectingMentionsStore(InMemoryGraphStore):
    def create_relationship(self, spec: RelationshipSpec):
        if spec.type == "MENTIONS":
            raise ValueError("rejected")
        return super().create_relationship(spec)


def test_rejected_writes_are_dropped(document, results) -> None:
    store = RejectingMentionsStore()

    structure = GraphBuilder(store, _extractor(results)).build_graph(document)

    assert len(structure.entities) == 4
    types: List[str] = [r.type for r in structure.relationships]
    assert "MENTIONS" not in types
    assert types.count("CONTAINS") == 2
    assert "PARTNERS_WITH" in types


def test_fallback_extraction_end_to_end(store) -> None:
    chunk = "John Smith joined Acme Corp in 2020."
    document = Document(id="doc3", name="bio.txt", content=chunk, chunks=[chunk])

    structure = GraphBuilder(store, GraphExtractor()).build_graph(document)

    texts = {e.properties["text"] for e in structure.entities}
    assert {"John Smith", "Acme Corp", "2020"} <= texts
    assert all(e.properties["extraction_method"] == "fallback" for e in structure.entities)
    assert len(store.get_nodes_by_type(NodeType.ENTITY)) == len(structure.entities)


def test_empty_document(store) -> None:
    document = Document(id="empty", name="empty.txt")

    structure = GraphBuilder(store, _extractor({})).build_graph(document)

    assert structure.sections == []
    assert structure.entities == []
    assert structure.hierarchy.sections == []
