"""Neo4j-backed graph store for document, section and entity nodes."""

import json
import logging
import re
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple
from uuid import uuid4

from neo4j import GraphDatabase, Session
from neo4j.exceptions import Neo4jError
from neo4j.graph import Node, Path, Relationship

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
from hybrid_rag.utils.config import DatabaseConfig

logger = logging.getLogger(__name__)

_RESERVED_NODE_KEYS = {"id", "node_type", "created_at", "updated_at"}
_RESERVED_REL_KEYS = {"id", "confidence", "weight", "created_at"}
_IDENTIFIER = re.compile(r"[^A-Za-z0-9_]")

_SEARCH_QUERIES = {
    "entity": """
        MATCH (n:Entity)
        WHERE (toLower(coalesce(n.text, '')) CONTAINS $term
               OR toLower(coalesce(n.normalized, '')) CONTAINS $term)
          AND coalesce(n.confidence, 1.0) >= $min_confidence
        RETURN n
        LIMIT $limit
    """,
    "relationship": """
        MATCH (source)-[r]->(target)
        WHERE toLower(coalesce(r.context, '')) CONTAINS $term
          AND coalesce(r.confidence, 1.0) >= $min_confidence
        RETURN source, r, target
        LIMIT $limit
    """,
    "path": """
        MATCH path = (start)-[*1..{max_depth}]-(end)
        WHERE toLower(coalesce(start.text, start.title, '')) CONTAINS $term
          AND all(rel IN relationships(path) WHERE coalesce(rel.confidence, 1.0) >= $min_confidence)
        RETURN path
        LIMIT $limit
    """,
    "pattern": """
        MATCH (n)
        WHERE (toLower(coalesce(n.text, '')) CONTAINS $term
               OR toLower(coalesce(n.content, '')) CONTAINS $term
               OR toLower(coalesce(n.title, '')) CONTAINS $term)
          AND coalesce(n.confidence, 1.0) >= $min_confidence
        OPTIONAL MATCH (n)-[r]-(connected)
        WHERE coalesce(r.confidence, 1.0) >= $min_confidence
        RETURN n, r, connected
        LIMIT $limit
    """,
}


def to_neo4j_value(value: Any) -> Any:
    """Neo4j stores primitives and homogeneous primitive lists; JSON-encode the rest."""
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, list):
        non_null = [v for v in value if v is not None]
        if len(non_null) == len(value) and len({type(v) for v in non_null}) <= 1:
            if all(isinstance(v, (str, bool, int, float)) for v in non_null):
                return list(value)
    return json.dumps(value, default=str, sort_keys=True)


def flatten_properties(properties: Properties, reserved: set) -> Dict[str, Any]:
    return {
        key: to_neo4j_value(value)
        for key, value in properties.items()
        if key not in reserved and value is not None
    }


class Neo4jGraphStore:
    """Graph store on top of the Neo4j driver.

    Node and relationship properties are stored as top-level Neo4j properties
    next to the bookkeeping fields (``id``, ``node_type``, timestamps).

    Attributes:
        uri: Neo4j connection URI
        user: Neo4j username
        password: Neo4j password
        database: Neo4j database name
        driver: Neo4j driver instance
    """

    def __init__(self, config: DatabaseConfig):
        self.uri = config.neo4j_uri
        self.user = config.neo4j_user
        self.password = config.neo4j_password
        self.database = config.neo4j_database
        self.driver = None
        self._connected = False

    def connect(self) -> None:
        """Establish connection to Neo4j database.

        Raises:
            Neo4jError: If connection fails
        """
        try:
            self.driver = GraphDatabase.driver(
                self.uri, auth=(self.user, self.password), max_connection_pool_size=50
            )
            self.driver.verify_connectivity()
            self._connected = True
            logger.info(f"Connected to Neo4j at {self.uri}")
        except Neo4jError as e:
            logger.error(f"Failed to connect to Neo4j: {e}")
            raise

    def close(self) -> None:
        """Close connection to Neo4j database."""
        if self.driver:
            self.driver.close()
            self._connected = False
            logger.info("Closed Neo4j connection")

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Context manager for Neo4j session.

        Raises:
            RuntimeError: If not connected to database
        """
        if not self._connected or not self.driver:
            raise RuntimeError("Not connected to Neo4j. Call connect() first.")

        session = self.driver.session(database=self.database)
        try:
            yield session
        finally:
            session.close()

    def create_schema(self) -> None:
        """Create lookup and text indexes used by ingestion and search."""
        statements = [
            "CREATE INDEX document_id_idx IF NOT EXISTS FOR (n:Document) ON (n.id)",
            "CREATE INDEX section_document_idx IF NOT EXISTS FOR (n:Section) ON (n.document_id)",
            "CREATE INDEX entity_id_idx IF NOT EXISTS FOR (n:Entity) ON (n.id)",
            "CREATE INDEX entity_type_idx IF NOT EXISTS FOR (n:Entity) ON (n.entity_type)",
            "CREATE INDEX entity_document_idx IF NOT EXISTS FOR (n:Entity) ON (n.document_id)",
            "CREATE TEXT INDEX entity_text_idx IF NOT EXISTS FOR (n:Entity) ON (n.text)",
        ]
        with self.session() as session:
            for statement in statements:
                try:
                    session.run(statement)
                except Neo4jError as e:
                    logger.warning(f"Could not create index ({statement}): {e}")
        logger.info("Neo4j schema ready")

    # Node operations

    def create_node(self, spec: NodeSpec) -> KnowledgeGraphNode:
        node = KnowledgeGraphNode(
            id=f"kg_{uuid4().hex}",
            type=spec.type,
            labels=list(spec.labels) or [spec.type.value],
            properties=dict(spec.properties),
        )
        props = flatten_properties(node.properties, _RESERVED_NODE_KEYS)
        props.update(
            {
                "id": node.id,
                "node_type": node.type.value,
                "created_at": node.created_at.isoformat(),
                "updated_at": node.updated_at.isoformat(),
            }
        )

        labels = ":".join(f"`{self._identifier(label)}`" for label in node.labels)
        with self.session() as session:
            record = session.run(f"CREATE (n:{labels} $props) RETURN n.id AS id", props=props).single()
            if record is None:
                raise RuntimeError("Failed to create node")
        logger.debug(f"Created node {node.id} ({node.type.value})")
        return node

    def update_node(self, node_id: str, properties: Properties) -> KnowledgeGraphNode:
        """Merge properties into a node.

        Raises:
            KeyError: If the node does not exist
        """
        query = """
        MATCH (n {id: $id})
        SET n += $props, n.updated_at = $updated_at
        RETURN n
        """
        with self.session() as session:
            record = session.run(
                query,
                id=node_id,
                props=flatten_properties(properties, _RESERVED_NODE_KEYS),
                updated_at=datetime.now().isoformat(),
            ).single()
        if record is None:
            raise KeyError(f"Node with id {node_id} not found")
        return self._to_node(record["n"])

    def get_node(self, node_id: str) -> Optional[KnowledgeGraphNode]:
        with self.session() as session:
            record = session.run("MATCH (n {id: $id}) RETURN n", id=node_id).single()
        return self._to_node(record["n"]) if record else None

    def delete_node(self, node_id: str) -> bool:
        with self.session() as session:
            summary = session.run("MATCH (n {id: $id}) DETACH DELETE n", id=node_id).consume()
        return summary.counters.nodes_deleted > 0

    # Relationship operations

    def create_relationship(self, spec: RelationshipSpec) -> KnowledgeGraphRelationship:
        """Create a directed edge between two existing nodes.

        Raises:
            ValueError: If either endpoint does not exist
        """
        relationship = KnowledgeGraphRelationship(
            id=f"kg_{uuid4().hex}",
            type=spec.type,
            source_node_id=spec.source_node_id,
            target_node_id=spec.target_node_id,
            properties=dict(spec.properties),
            confidence=spec.confidence,
            weight=spec.weight,
        )
        props = flatten_properties(relationship.properties, _RESERVED_REL_KEYS)
        props.update(
            {
                "id": relationship.id,
                "confidence": relationship.confidence,
                "weight": relationship.weight,
                "created_at": relationship.created_at.isoformat(),
            }
        )

        query = f"""
        MATCH (source {{id: $source_id}})
        MATCH (target {{id: $target_id}})
        CREATE (source)-[r:`{self._identifier(relationship.type)}`]->(target)
        SET r = $props
        RETURN r.id AS id
        """
        with self.session() as session:
            record = session.run(
                query,
                source_id=relationship.source_node_id,
                target_id=relationship.target_node_id,
                props=props,
            ).single()
        if record is None:
            raise ValueError(
                f"Source {relationship.source_node_id} or target "
                f"{relationship.target_node_id} node not found"
            )
        return relationship

    # Queries

    def query(self, graph_query: GraphQuery) -> GraphQueryResult:
        """Execute raw Cypher and collect any nodes, relationships and paths returned."""
        start = time.perf_counter()
        with self.session() as session:
            result = session.run(graph_query.query, graph_query.parameters)
            records = list(result)
            summary = result.consume()

        nodes, relationships = self._collect(records)
        result_count = len(records) or summary.counters.nodes_deleted
        if graph_query.limit:
            nodes = nodes[: graph_query.limit]
            relationships = relationships[: graph_query.limit]
        return GraphQueryResult(
            nodes=nodes,
            relationships=relationships,
            result_count=result_count,
            execution_time_ms=(time.perf_counter() - start) * 1000,
        )

    def search(self, term: str, options: Optional[GraphSearchOptions] = None) -> GraphQueryResult:
        options = options or GraphSearchOptions()
        template = _SEARCH_QUERIES.get(options.search_type, _SEARCH_QUERIES["pattern"])
        if options.search_type == "path":
            template = template.replace("{max_depth}", str(int(options.max_depth)))

        start = time.perf_counter()
        with self.session() as session:
            records = list(
                session.run(
                    template,
                    term=term.lower().strip(),
                    min_confidence=options.min_confidence,
                    limit=options.max_results,
                )
            )

        nodes, relationships = self._collect(records)
        if not options.include_relationships:
            relationships = []
        return GraphQueryResult(
            nodes=nodes,
            relationships=relationships,
            result_count=len(nodes) + len(relationships),
            execution_time_ms=(time.perf_counter() - start) * 1000,
        )

    # Analytics and validation

    def get_analytics(self) -> GraphAnalytics:
        with self.session() as session:
            node_rows = session.run(
                "MATCH (n) RETURN coalesce(n.node_type, 'unknown') AS type, count(n) AS count"
            ).data()
            rel_rows = session.run(
                "MATCH ()-[r]->() RETURN type(r) AS type, count(r) AS count"
            ).data()

        nodes_by_type = {row["type"]: row["count"] for row in node_rows}
        relationships_by_type = {row["type"]: row["count"] for row in rel_rows}
        node_count = sum(nodes_by_type.values())
        relationship_count = sum(relationships_by_type.values())
        max_edges = node_count * (node_count - 1)

        # Component counting needs the GDS plugin; it is left at 0 here.
        return GraphAnalytics(
            node_count=node_count,
            relationship_count=relationship_count,
            average_degree=(2 * relationship_count / node_count) if node_count else 0.0,
            density=relationship_count / max_edges if max_edges else 0.0,
            nodes_by_type=nodes_by_type,
            relationships_by_type=relationships_by_type,
        )

    def validate_graph(self) -> GraphValidationResult:
        warnings: List[GraphValidationIssue] = []
        with self.session() as session:
            try:
                for row in session.run(
                    "MATCH (n) WHERE NOT (n)--() RETURN n.id AS node_id LIMIT 100"
                ).data():
                    warnings.append(
                        GraphValidationIssue(
                            type="ORPHANED_NODE",
                            message=f"Node {row['node_id']} has no relationships",
                            suggestion="Consider connecting this node or removing it if not needed",
                            node_id=row["node_id"],
                        )
                    )
            except Neo4jError as e:
                logger.warning(f"Failed to check for orphaned nodes: {e}")

            try:
                duplicate_query = """
                MATCH (n:Entity)
                WITH n.text AS text, collect(n.id) AS node_ids
                WHERE size(node_ids) > 1
                RETURN text, node_ids
                LIMIT 50
                """
                for row in session.run(duplicate_query).data():
                    warnings.append(
                        GraphValidationIssue(
                            type="DUPLICATE_ENTITIES",
                            message=f"Multiple entities found with text: {row['text']}",
                            suggestion="Consider merging duplicate entities",
                            severity="MEDIUM",
                        )
                    )
            except Neo4jError as e:
                logger.warning(f"Failed to check for duplicate entities: {e}")

        return GraphValidationResult(is_valid=True, warnings=warnings, statistics=self.get_analytics())

    # Utility methods

    def health_check(self) -> bool:
        """Check if Neo4j connection is healthy."""
        try:
            with self.session() as session:
                result = session.run("RETURN 1")
                return result.single() is not None
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return False

    def clear(self) -> None:
        """Delete every node and relationship."""
        with self.session() as session:
            session.run("MATCH (n) DETACH DELETE n")
        logger.warning("Cleared all data from Neo4j database")

    def __enter__(self) -> "Neo4jGraphStore":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # Record conversion

    def _collect(
        self, records: List[Any]
    ) -> Tuple[List[KnowledgeGraphNode], List[KnowledgeGraphRelationship]]:
        nodes: Dict[str, KnowledgeGraphNode] = {}
        relationships: Dict[str, KnowledgeGraphRelationship] = {}

        def add_node(value: Node) -> None:
            node = self._to_node(value)
            nodes.setdefault(node.id, node)

        def add_relationship(value: Relationship) -> None:
            rel = self._to_relationship(value)
            relationships.setdefault(rel.id, rel)

        for record in records:
            for value in record.values():
                if isinstance(value, Node):
                    add_node(value)
                elif isinstance(value, Relationship):
                    add_relationship(value)
                elif isinstance(value, Path):
                    for node in value.nodes:
                        add_node(node)
                    for rel in value.relationships:
                        add_relationship(rel)

        return list(nodes.values()), list(relationships.values())

    @staticmethod
    def _to_node(value: Node) -> KnowledgeGraphNode:
        props = dict(value)
        labels = list(value.labels)
        raw_type = props.pop("node_type", labels[0] if labels else NodeType.ENTITY.value)
        try:
            node_type = NodeType(raw_type)
        except ValueError:
            node_type = NodeType.ENTITY

        node_id = props.pop("id", None) or value.element_id
        created_at = Neo4jGraphStore._parse_time(props.pop("created_at", None))
        updated_at = Neo4jGraphStore._parse_time(props.pop("updated_at", None))
        return KnowledgeGraphNode(
            id=node_id,
            type=node_type,
            labels=labels,
            properties=props,
            created_at=created_at,
            updated_at=updated_at,
        )

    @staticmethod
    def _to_relationship(value: Relationship) -> KnowledgeGraphRelationship:
        props = dict(value)
        rel_id = props.pop("id", None) or value.element_id
        confidence = props.pop("confidence", 1.0)
        weight = props.pop("weight", 1.0)
        created_at = Neo4jGraphStore._parse_time(props.pop("created_at", None))

        start, end = value.start_node, value.end_node
        return KnowledgeGraphRelationship(
            id=rel_id,
            type=value.type,
            source_node_id=(start.get("id") if start is not None else None) or "",
            target_node_id=(end.get("id") if end is not None else None) or "",
            properties=props,
            confidence=max(0.0, min(1.0, float(confidence if confidence is not None else 1.0))),
            weight=float(weight if weight is not None else 1.0),
            created_at=created_at,
        )

    @staticmethod
    def _parse_time(value: Any) -> datetime:
        if isinstance(value, str):
            try:
                return datetime.fromisoformat(value)
            except ValueError:
                pass
        return datetime.now()

    @staticmethod
    def _identifier(value: str) -> str:
        cleaned = _IDENTIFIER.sub("_", value.strip())
        return cleaned or "RELATED"
