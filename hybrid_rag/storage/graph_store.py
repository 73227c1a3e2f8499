"""Graph store interface and an in-process implementation.

``InMemoryGraphStore`` keeps nodes and relationships in dictionaries with
per-type indexes. It is the default backend for development and tests and
implements the same search semantics as the Neo4j store at a smaller scale.
"""

import logging
import threading
import time
from collections import deque
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Set, Tuple, runtime_checkable
from uuid import uuid4

from hybrid_rag.extraction.models import Properties
from hybrid_rag.storage.schemas import (
    GraphAnalytics,
    GraphQuery,
    GraphQueryResult,
    GraphSearchOptions,
    GraphValidationIssue,
    GraphValidationResult,
    KnowledgeGraphNode,
    KnowledgeGraphRelationship,
    NodeSpec,
    NodeType,
    RelationshipSpec,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class GraphStore(Protocol):
    """Persistence contract for knowledge graph nodes and edges."""

    def create_node(self, spec: NodeSpec) -> KnowledgeGraphNode: ...

    def create_relationship(self, spec: RelationshipSpec) -> KnowledgeGraphRelationship: ...

    def update_node(self, node_id: str, properties: Properties) -> KnowledgeGraphNode: ...

    def search(
        self, term: str, options: Optional[GraphSearchOptions] = None
    ) -> GraphQueryResult: ...

    def query(self, graph_query: GraphQuery) -> GraphQueryResult: ...

    def get_analytics(self) -> GraphAnalytics: ...

    def validate_graph(self) -> GraphValidationResult: ...

    def health_check(self) -> bool: ...

    def clear(self) -> None: ...

    def close(self) -> None: ...


def searchable_text(node: KnowledgeGraphNode) -> str:
    """Lower-cased labels and property values of a node, for substring search."""
    parts: List[str] = [node.type.value, *node.labels]
    for value in node.properties.values():
        if isinstance(value, list):
            parts.extend(str(item) for item in value if item is not None)
        elif value is not None:
            parts.append(str(value))
    return " ".join(parts).lower()


class InMemoryGraphStore:
    """Dictionary-backed graph store with type indexes."""

    def __init__(self) -> None:
        self._nodes: Dict[str, KnowledgeGraphNode] = {}
        self._relationships: Dict[str, KnowledgeGraphRelationship] = {}
        self._nodes_by_type: Dict[str, Set[str]] = {}
        self._relationships_by_type: Dict[str, Set[str]] = {}
        self._lock = threading.RLock()
        logger.info("Initialized in-memory graph store")

    # Node operations

    def create_node(self, spec: NodeSpec) -> KnowledgeGraphNode:
        node = KnowledgeGraphNode(
            id=self._generate_id(),
            type=spec.type,
            labels=list(spec.labels),
            properties=dict(spec.properties),
        )
        with self._lock:
            self._nodes[node.id] = node
            self._nodes_by_type.setdefault(node.type.value, set()).add(node.id)
        return node

    def update_node(self, node_id: str, properties: Properties) -> KnowledgeGraphNode:
        """Merge ``properties`` into an existing node.

        Raises:
            KeyError: If the node does not exist
        """
        with self._lock:
            existing = self._nodes.get(node_id)
            if existing is None:
                raise KeyError(f"Node with id {node_id} not found")
            updated = existing.model_copy(
                update={
                    "properties": {**existing.properties, **properties},
                    "updated_at": datetime.now(),
                }
            )
            self._nodes[node_id] = updated
            return updated

    def get_node(self, node_id: str) -> Optional[KnowledgeGraphNode]:
        with self._lock:
            return self._nodes.get(node_id)

    def delete_node(self, node_id: str) -> bool:
        """Delete a node and every relationship touching it."""
        with self._lock:
            node = self._nodes.pop(node_id, None)
            if node is None:
                return False

            type_ids = self._nodes_by_type.get(node.type.value)
            if type_ids is not None:
                type_ids.discard(node_id)
                if not type_ids:
                    del self._nodes_by_type[node.type.value]

            attached = [
                rel_id
                for rel_id, rel in self._relationships.items()
                if rel.source_node_id == node_id or rel.target_node_id == node_id
            ]
            for rel_id in attached:
                self.delete_relationship(rel_id)
            return True

    def get_nodes_by_type(self, node_type: NodeType | str) -> List[KnowledgeGraphNode]:
        key = node_type.value if isinstance(node_type, NodeType) else node_type
        with self._lock:
            return [self._nodes[node_id] for node_id in self._nodes_by_type.get(key, set())]

    # Relationship operations

    def create_relationship(self, spec: RelationshipSpec) -> KnowledgeGraphRelationship:
        """Create a directed edge.

        Raises:
            ValueError: If either endpoint does not exist
        """
        with self._lock:
            if spec.source_node_id not in self._nodes:
                raise ValueError(f"Source node {spec.source_node_id} not found")
            if spec.target_node_id not in self._nodes:
                raise ValueError(f"Target node {spec.target_node_id} not found")

            relationship = KnowledgeGraphRelationship(
                id=self._generate_id(),
                type=spec.type,
                source_node_id=spec.source_node_id,
                target_node_id=spec.target_node_id,
                properties=dict(spec.properties),
                confidence=spec.confidence,
                weight=spec.weight,
            )
            self._relationships[relationship.id] = relationship
            self._relationships_by_type.setdefault(relationship.type, set()).add(relationship.id)
            return relationship

    def delete_relationship(self, relationship_id: str) -> bool:
        with self._lock:
            relationship = self._relationships.pop(relationship_id, None)
            if relationship is None:
                return False
            type_ids = self._relationships_by_type.get(relationship.type)
            if type_ids is not None:
                type_ids.discard(relationship_id)
                if not type_ids:
                    del self._relationships_by_type[relationship.type]
            return True

    def get_relationships_by_type(self, rel_type: str) -> List[KnowledgeGraphRelationship]:
        with self._lock:
            return [
                self._relationships[rel_id]
                for rel_id in self._relationships_by_type.get(rel_type, set())
            ]

    # Queries

    def query(self, graph_query: GraphQuery) -> GraphQueryResult:
        """Run the small set of raw queries this store understands.

        Supported: delete-by-document (``DETACH DELETE`` with a ``document_id``
        parameter), ``MATCH (n)`` for all nodes and ``MATCH ()-[r]-()`` for all
        relationships.

        Raises:
            ValueError: For any other query
        """
        start = time.perf_counter()
        text = graph_query.query.lower()
        params = graph_query.parameters

        if "detach delete" in text:
            document_id = params.get("document_id", params.get("documentId"))
            if document_id is None:
                raise ValueError("Delete query requires a document_id parameter")
            deleted = self._delete_document(str(document_id))
            return GraphQueryResult(result_count=deleted, execution_time_ms=self._elapsed(start))

        limit = graph_query.limit or 100
        nodes: List[KnowledgeGraphNode] = []
        relationships: List[KnowledgeGraphRelationship] = []
        matched = False
        with self._lock:
            if "match (n)" in text:
                nodes = list(self._nodes.values())
                matched = True
            if "match ()-[r]-()" in text:
                relationships = list(self._relationships.values())
                matched = True

        if not matched:
            raise ValueError(f"Unsupported query for in-memory graph store: {graph_query.query}")

        return GraphQueryResult(
            nodes=nodes[:limit],
            relationships=relationships[:limit],
            result_count=len(nodes) + len(relationships),
            execution_time_ms=self._elapsed(start),
        )

    def search(self, term: str, options: Optional[GraphSearchOptions] = None) -> GraphQueryResult:
        """Substring search over node labels and property values."""
        start = time.perf_counter()
        options = options or GraphSearchOptions()
        needle = term.lower().strip()

        with self._lock:
            if not needle:
                nodes, relationships = [], []
            elif options.search_type == "entity":
                nodes, relationships = self._search_entities(needle, options)
            elif options.search_type == "relationship":
                nodes, relationships = self._search_relationships(needle, options)
            elif options.search_type == "path":
                nodes, relationships = self._search_paths(needle, options)
            else:
                nodes, relationships = self._search_pattern(needle, options)

        nodes = nodes[: options.max_results]
        relationships = relationships[: options.max_results]
        return GraphQueryResult(
            nodes=nodes,
            relationships=relationships,
            result_count=len(nodes) + len(relationships),
            execution_time_ms=self._elapsed(start),
        )

    def _search_entities(
        self, needle: str, options: GraphSearchOptions
    ) -> Tuple[List[KnowledgeGraphNode], List[KnowledgeGraphRelationship]]:
        nodes = []
        for node in self._nodes.values():
            if node.type != NodeType.ENTITY:
                continue
            text = str(node.properties.get("text", "")).lower()
            normalized = str(node.properties.get("normalized", "")).lower()
            if (needle in text or needle in normalized) and self._node_passes(node, options):
                nodes.append(node)
        return nodes, []

    def _search_relationships(
        self, needle: str, options: GraphSearchOptions
    ) -> Tuple[List[KnowledgeGraphNode], List[KnowledgeGraphRelationship]]:
        nodes: Dict[str, KnowledgeGraphNode] = {}
        relationships = []
        for rel in self._relationships.values():
            context = str(rel.properties.get("context", "")).lower()
            if needle in context and rel.confidence >= options.min_confidence:
                relationships.append(rel)
                for endpoint in (rel.source_node_id, rel.target_node_id):
                    if endpoint in self._nodes:
                        nodes.setdefault(endpoint, self._nodes[endpoint])
        return list(nodes.values()), relationships

    def _search_paths(
        self, needle: str, options: GraphSearchOptions
    ) -> Tuple[List[KnowledgeGraphNode], List[KnowledgeGraphRelationship]]:
        starts = [
            node
            for node in self._nodes.values()
            if needle in str(node.properties.get("text", node.properties.get("title", ""))).lower()
            and self._node_passes(node, options)
        ]

        seen_nodes: Dict[str, KnowledgeGraphNode] = {node.id: node for node in starts}
        seen_rels: Dict[str, KnowledgeGraphRelationship] = {}
        frontier = deque((node.id, 0) for node in starts)
        while frontier:
            node_id, depth = frontier.popleft()
            if depth >= options.max_depth:
                continue
            for rel in self._incident(node_id, options):
                seen_rels.setdefault(rel.id, rel)
                other = rel.target_node_id if rel.source_node_id == node_id else rel.source_node_id
                if other not in seen_nodes and other in self._nodes:
                    seen_nodes[other] = self._nodes[other]
                    frontier.append((other, depth + 1))
        return list(seen_nodes.values()), list(seen_rels.values())

    def _search_pattern(
        self, needle: str, options: GraphSearchOptions
    ) -> Tuple[List[KnowledgeGraphNode], List[KnowledgeGraphRelationship]]:
        matched = [
            node
            for node in self._nodes.values()
            if needle in searchable_text(node) and self._node_passes(node, options)
        ][: options.max_results]

        nodes: Dict[str, KnowledgeGraphNode] = {node.id: node for node in matched}
        relationships: Dict[str, KnowledgeGraphRelationship] = {}
        if options.include_relationships:
            for node in matched:
                for rel in self._incident(node.id, options):
                    relationships.setdefault(rel.id, rel)
                    other = rel.target_node_id if rel.source_node_id == node.id else rel.source_node_id
                    if other in self._nodes:
                        nodes.setdefault(other, self._nodes[other])
        return list(nodes.values()), list(relationships.values())

    def _incident(
        self, node_id: str, options: GraphSearchOptions
    ) -> List[KnowledgeGraphRelationship]:
        return [
            rel
            for rel in self._relationships.values()
            if (rel.source_node_id == node_id or rel.target_node_id == node_id)
            and rel.confidence >= options.min_confidence
        ]

    @staticmethod
    def _node_passes(node: KnowledgeGraphNode, options: GraphSearchOptions) -> bool:
        confidence = node.properties.get("confidence")
        if isinstance(confidence, (int, float)) and not isinstance(confidence, bool):
            return confidence >= options.min_confidence
        return True

    def _delete_document(self, document_id: str) -> int:
        with self._lock:
            owned = [
                node_id
                for node_id, node in self._nodes.items()
                if node.properties.get("document_id") == document_id
            ]
            for node_id in owned:
                self.delete_node(node_id)
        logger.info(f"Deleted {len(owned)} nodes for document {document_id}")
        return len(owned)

    # Analytics and validation

    def get_analytics(self) -> GraphAnalytics:
        with self._lock:
            node_count = len(self._nodes)
            relationship_count = len(self._relationships)

            degree_total = 2 * relationship_count
            max_edges = node_count * (node_count - 1)

            return GraphAnalytics(
                node_count=node_count,
                relationship_count=relationship_count,
                average_degree=degree_total / node_count if node_count else 0.0,
                density=relationship_count / max_edges if max_edges else 0.0,
                connected_components=self._count_components(),
                nodes_by_type={k: len(v) for k, v in self._nodes_by_type.items()},
                relationships_by_type={k: len(v) for k, v in self._relationships_by_type.items()},
            )

    def _count_components(self) -> int:
        parent = {node_id: node_id for node_id in self._nodes}

        def find(node_id: str) -> str:
            while parent[node_id] != node_id:
                parent[node_id] = parent[parent[node_id]]
                node_id = parent[node_id]
            return node_id

        for rel in self._relationships.values():
            if rel.source_node_id in parent and rel.target_node_id in parent:
                parent[find(rel.source_node_id)] = find(rel.target_node_id)

        return len({find(node_id) for node_id in parent})

    def validate_graph(self) -> GraphValidationResult:
        errors: List[GraphValidationIssue] = []
        warnings: List[GraphValidationIssue] = []

        with self._lock:
            connected: Set[str] = set()
            for rel_id, rel in self._relationships.items():
                connected.add(rel.source_node_id)
                connected.add(rel.target_node_id)
                for role, endpoint in (("source", rel.source_node_id), ("target", rel.target_node_id)):
                    if endpoint not in self._nodes:
                        errors.append(
                            GraphValidationIssue(
                                type="BROKEN_RELATIONSHIP",
                                message=(
                                    f"Relationship {rel_id} references non-existent "
                                    f"{role} node {endpoint}"
                                ),
                                relationship_id=rel_id,
                                severity="HIGH",
                            )
                        )

            entity_texts: Dict[str, List[str]] = {}
            for node_id, node in self._nodes.items():
                if node_id not in connected:
                    warnings.append(
                        GraphValidationIssue(
                            type="ORPHANED_NODE",
                            message=f"Node {node_id} has no relationships",
                            suggestion="Consider connecting this node or removing it if not needed",
                            node_id=node_id,
                        )
                    )
                if node.type == NodeType.ENTITY:
                    text = str(node.properties.get("text", ""))
                    entity_texts.setdefault(text, []).append(node_id)

            for text, node_ids in entity_texts.items():
                if len(node_ids) > 1:
                    warnings.append(
                        GraphValidationIssue(
                            type="DUPLICATE_ENTITIES",
                            message=f"Multiple entities found with text: {text}",
                            suggestion="Consider merging duplicate entities",
                            severity="MEDIUM",
                        )
                    )

        return GraphValidationResult(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            statistics=self.get_analytics(),
        )

    # Lifecycle

    def health_check(self) -> bool:
        return True

    def clear(self) -> None:
        with self._lock:
            self._nodes.clear()
            self._relationships.clear()
            self._nodes_by_type.clear()
            self._relationships_by_type.clear()
        logger.info("In-memory knowledge graph cleared")

    def close(self) -> None:
        self.clear()

    def __enter__(self) -> "InMemoryGraphStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @staticmethod
    def _generate_id() -> str:
        return f"mem_{uuid4().hex[:16]}"

    @staticmethod
    def _elapsed(start: float) -> float:
        return (time.perf_counter() - start) * 1000
