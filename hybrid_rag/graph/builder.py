"""Build the knowledge graph of one chunked document.

The graph has one Document node, one Section node per chunk (linked with
CONTAINS), one Entity node per extracted mention (linked from its section
with MENTIONS) and typed edges for extracted relationships. Relationship
endpoints are looked up by exact entity text among the entity nodes created
so far in the same build, so a relationship that names an entity from a later
chunk is dropped.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Tuple

from loguru import logger

from hybrid_rag.extraction.graph_extractor import GraphExtractor
from hybrid_rag.extraction.models import (
    EntityExtractionResult,
    EntityResolutionResult,
    ExtractedEntity,
    ResolvedEntity,
)
from hybrid_rag.normalization.entity_resolver import EntityResolver
from hybrid_rag.storage.graph_store import GraphStore
from hybrid_rag.storage.schemas import (
    Document,
    DocumentGraphStructure,
    DocumentHierarchy,
    HierarchySection,
    KnowledgeGraphNode,
    KnowledgeGraphRelationship,
    NodeSpec,
    NodeType,
    RelationshipSpec,
    RelationshipType,
)
from hybrid_rag.utils.config import GraphConfig


def context_window(chunk: str, start: int, end: int, width: int) -> str:
    """Text around ``[start, end)`` padded by ``width`` chars, clipped to the chunk."""
    return chunk[max(0, start - width) : min(len(chunk), end + width)]


class GraphBuilder:
    """Persists documents, sections, entities and relationships to a graph store."""

    def __init__(
        self,
        graph_store: GraphStore,
        extractor: GraphExtractor,
        resolver: Optional[EntityResolver] = None,
        config: Optional[GraphConfig] = None,
    ) -> None:
        self.graph_store = graph_store
        self.extractor = extractor
        self.resolver = resolver or EntityResolver()
        self.config = config or GraphConfig()

    def build_graph(self, document: Document) -> DocumentGraphStructure:
        """Create the graph for ``document``.

        Args:
            document: Chunked document

        Returns:
            Everything that was written to the store

        Raises:
            RuntimeError: If the Document node cannot be created
        """
        logger.info(
            "Building knowledge graph",
            document_id=document.id,
            chunks=len(document.chunks),
        )

        document_node = self._create_document_node(document)
        extractions = self._extract_all(document)

        sections: List[KnowledgeGraphNode] = []
        entities: List[KnowledgeGraphNode] = []
        relationships: List[KnowledgeGraphRelationship] = []
        mentions: List[ExtractedEntity] = []

        for index, (chunk, extraction) in enumerate(zip(document.chunks, extractions)):
            section = self._create_node(
                NodeSpec(
                    type=NodeType.SECTION,
                    labels=["Section", "Chunk"],
                    properties={
                        "content": chunk,
                        "chunk_index": index,
                        "document_id": document.id,
                        "word_count": len(chunk.split()),
                    },
                )
            )
            if section is None:
                continue
            sections.append(section)

            contains = self._create_relationship(
                RelationshipSpec(
                    type=RelationshipType.CONTAINS.value,
                    source_node_id=document_node.id,
                    target_node_id=section.id,
                    confidence=1.0,
                    properties={
                        "chunk_index": index,
                        "relationship": "document_contains_section",
                    },
                )
            )
            if contains is not None:
                relationships.append(contains)

            for entity in extraction.entities:
                mentions.append(entity)
                entity_node = self._create_node(
                    NodeSpec(
                        type=NodeType.ENTITY,
                        labels=["Entity", entity.type],
                        properties={
                            **entity.properties,
                            "text": entity.text,
                            "normalized": entity.text.lower().strip(),
                            "entity_type": entity.type,
                            "confidence": entity.confidence,
                            "start_offset": entity.start_offset,
                            "end_offset": entity.end_offset,
                            "document_id": document.id,
                            "chunk_index": index,
                            "aliases": list(entity.aliases),
                        },
                    )
                )
                if entity_node is None:
                    continue
                entities.append(entity_node)

                mention = self._create_relationship(
                    RelationshipSpec(
                        type=RelationshipType.MENTIONS.value,
                        source_node_id=section.id,
                        target_node_id=entity_node.id,
                        confidence=entity.confidence,
                        properties={
                            "context": context_window(
                                chunk,
                                entity.start_offset,
                                entity.end_offset,
                                self.config.context_window,
                            ),
                            "confidence": entity.confidence,
                        },
                    )
                )
                if mention is not None:
                    relationships.append(mention)

            relationships.extend(self._link_relationships(extraction, entities, index))

        hierarchy = DocumentHierarchy(
            document=document_node.id,
            sections=[
                HierarchySection(
                    id=section.id,
                    title=f"Section {i + 1}",
                    level=1,
                    parent=document_node.id,
                )
                for i, section in enumerate(sections)
            ],
        )

        resolution = self.resolver.resolve(mentions)
        if self.config.annotate_canonical_entities:
            entities = self._annotate_canonical(entities, resolution)

        logger.info(
            "Knowledge graph created",
            document_id=document.id,
            sections=len(sections),
            entities=len(entities),
            relationships=len(relationships),
            resolved_entities=len(resolution.resolved_entities),
        )

        return DocumentGraphStructure(
            document_node=document_node,
            sections=sections,
            entities=entities,
            relationships=relationships,
            hierarchy=hierarchy,
            resolution=resolution,
        )

    def _create_document_node(self, document: Document) -> KnowledgeGraphNode:
        spec = NodeSpec(
            type=NodeType.DOCUMENT,
            labels=["Document"],
            properties={
                **document.metadata,
                "title": document.name,
                "content": document.content[: self.config.content_preview_chars],
                "chunk_count": len(document.chunks),
                "uploaded_at": document.uploaded_at.isoformat(),
                "document_id": document.id,
            },
        )
        try:
            return self.graph_store.create_node(spec)
        except Exception as e:
            logger.error("Failed to create document node", document_id=document.id, error=str(e))
            raise RuntimeError(f"Failed to create document node for {document.id}: {e}") from e

    def _extract_all(self, document: Document) -> List[EntityExtractionResult]:
        """Run extraction for every chunk concurrently, returning results in chunk order."""
        if not document.chunks:
            return []

        workers = min(self.config.max_workers, len(document.chunks))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [
                executor.submit(self.extractor.extract, chunk, document.id, index)
                for index, chunk in enumerate(document.chunks)
            ]
            return [future.result() for future in futures]

    def _link_relationships(
        self,
        extraction: EntityExtractionResult,
        entities: List[KnowledgeGraphNode],
        chunk_index: int,
    ) -> List[KnowledgeGraphRelationship]:
        by_text: Dict[str, KnowledgeGraphNode] = {}
        for node in entities:
            by_text.setdefault(str(node.properties.get("text")), node)

        created: List[KnowledgeGraphRelationship] = []
        for extracted in extraction.relationships:
            source = by_text.get(extracted.source_entity)
            target = by_text.get(extracted.target_entity)
            if source is None or target is None:
                logger.debug(
                    "Dropping relationship with unknown endpoint",
                    source=extracted.source_entity,
                    target=extracted.target_entity,
                    chunk_index=chunk_index,
                )
                continue

            relationship = self._create_relationship(
                RelationshipSpec(
                    type=extracted.relationship_type,
                    source_node_id=source.id,
                    target_node_id=target.id,
                    confidence=extracted.confidence,
                    properties={
                        **extracted.properties,
                        "context": extracted.context,
                        "extracted_from": f"chunk_{chunk_index}",
                    },
                )
            )
            if relationship is not None:
                created.append(relationship)
        return created

    def _annotate_canonical(
        self, entities: List[KnowledgeGraphNode], resolution: EntityResolutionResult
    ) -> List[KnowledgeGraphNode]:
        lookup: Dict[Tuple[str, str], ResolvedEntity] = {}
        for resolved in resolution.resolved_entities:
            lookup.setdefault((resolved.type, resolved.canonical_name), resolved)
        for resolved in resolution.resolved_entities:
            for alias in resolved.aliases:
                lookup.setdefault((resolved.type, alias), resolved)

        annotated: List[KnowledgeGraphNode] = []
        for node in entities:
            key = (str(node.properties.get("entity_type")), str(node.properties.get("text")))
            resolved = lookup.get(key)
            if resolved is None:
                annotated.append(node)
                continue
            try:
                annotated.append(
                    self.graph_store.update_node(
                        node.id,
                        {"canonical_id": resolved.id, "canonical_name": resolved.canonical_name},
                    )
                )
            except Exception as e:
                logger.warning(f"Failed to annotate entity {node.id}: {e}")
                annotated.append(node)
        return annotated

    def _create_node(self, spec: NodeSpec) -> Optional[KnowledgeGraphNode]:
        try:
            return self.graph_store.create_node(spec)
        except Exception as e:
            logger.warning(f"Failed to create {spec.type.value} node: {e}")
            return None

    def _create_relationship(self, spec: RelationshipSpec) -> Optional[KnowledgeGraphRelationship]:
        try:
            return self.graph_store.create_relationship(spec)
        except Exception as e:
            logger.warning(f"Failed to create {spec.type} relationship: {e}")
            return None
