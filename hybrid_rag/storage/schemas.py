"""Pydantic models for graph and vector storage."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from hybrid_rag.extraction.models import EntityResolutionResult, Properties, coerce_properties

# Issued by the engine to remove every node owned by a document; stores
# recognize it and cascade-delete the attached relationships.
DELETE_DOCUMENT_QUERY = "MATCH (n) WHERE n.document_id = $document_id DETACH DELETE n"


class NodeType(str, Enum):
    """Node types in the knowledge graph."""

    DOCUMENT = "Document"
    SECTION = "Section"
    PARAGRAPH = "Paragraph"
    ENTITY = "Entity"
    CONCEPT = "Concept"
    CITATION = "Citation"
    AUTHOR = "Author"
    ORGANIZATION = "Organization"
    LOCATION = "Location"
    DATE = "Date"
    TOPIC = "Topic"


class RelationshipType(str, Enum):
    """Relationship types in the knowledge graph.

    Extracted relationships may carry types outside this vocabulary; edges
    store their type as a plain string.
    """

    CONTAINS = "CONTAINS"
    MENTIONS = "MENTIONS"
    RELATES_TO = "RELATES_TO"
    CITES = "CITES"
    AUTHORED_BY = "AUTHORED_BY"
    SIMILAR_TO = "SIMILAR_TO"
    FOLLOWS = "FOLLOWS"
    PRECEDES = "PRECEDES"
    PART_OF = "PART_OF"
    REFERENCES = "REFERENCES"
    LOCATED_IN = "LOCATED_IN"
    OCCURRED_ON = "OCCURRED_ON"
    ASSOCIATED_WITH = "ASSOCIATED_WITH"


class _PropertiesModel(BaseModel):
    properties: Properties = Field(default_factory=dict, description="Open property map")

    @field_validator("properties", mode="before")
    @classmethod
    def _coerce_properties(cls, value: Any) -> Properties:
        return coerce_properties(value)


class NodeSpec(_PropertiesModel):
    """Payload for creating a node; the store assigns id and timestamps."""

    type: NodeType
    labels: List[str] = Field(default_factory=list)


class RelationshipSpec(_PropertiesModel):
    """Payload for creating a directed edge between two existing nodes."""

    type: str
    source_node_id: str
    target_node_id: str
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    weight: float = 1.0


class KnowledgeGraphNode(_PropertiesModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    type: NodeType
    labels: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class KnowledgeGraphRelationship(_PropertiesModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    type: str
    source_node_id: str
    target_node_id: str
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    weight: float = 1.0
    created_at: datetime = Field(default_factory=datetime.now)


class GraphQuery(BaseModel):
    """Raw store query (Cypher for Neo4j), used for bulk operations."""

    query: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    limit: Optional[int] = None


class GraphQueryResult(BaseModel):
    nodes: List[KnowledgeGraphNode] = Field(default_factory=list)
    relationships: List[KnowledgeGraphRelationship] = Field(default_factory=list)
    result_count: int = 0
    execution_time_ms: float = 0.0


class GraphSearchOptions(BaseModel):
    search_type: Literal["entity", "relationship", "path", "pattern"] = "pattern"
    max_results: int = Field(default=10, ge=1)
    min_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    include_relationships: bool = True
    max_depth: int = Field(default=3, ge=1)


class HierarchySection(BaseModel):
    id: str
    title: str
    level: int = 1
    children: List[str] = Field(default_factory=list)
    parent: Optional[str] = None


class DocumentHierarchy(BaseModel):
    document: str
    sections: List[HierarchySection] = Field(default_factory=list)


class DocumentGraphStructure(BaseModel):
    """Everything ``GraphBuilder.build_graph`` created for one document."""

    document_node: KnowledgeGraphNode
    sections: List[KnowledgeGraphNode] = Field(default_factory=list)
    entities: List[KnowledgeGraphNode] = Field(default_factory=list)
    relationships: List[KnowledgeGraphRelationship] = Field(default_factory=list)
    hierarchy: DocumentHierarchy
    resolution: Optional[EntityResolutionResult] = None


class GraphAnalytics(BaseModel):
    node_count: int = 0
    relationship_count: int = 0
    average_degree: float = 0.0
    density: float = 0.0
    connected_components: int = 0
    nodes_by_type: Dict[str, int] = Field(default_factory=dict)
    relationships_by_type: Dict[str, int] = Field(default_factory=dict)


class GraphValidationIssue(BaseModel):
    type: str
    message: str
    severity: Literal["HIGH", "MEDIUM", "LOW"] = "LOW"
    suggestion: str = ""
    node_id: Optional[str] = None
    relationship_id: Optional[str] = None


class GraphValidationResult(BaseModel):
    is_valid: bool
    errors: List[GraphValidationIssue] = Field(default_factory=list)
    warnings: List[GraphValidationIssue] = Field(default_factory=list)
    statistics: GraphAnalytics = Field(default_factory=GraphAnalytics)


class Document(BaseModel):
    """A chunked document ready for ingestion; chunking happens upstream."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    content: str = ""
    chunks: List[str] = Field(default_factory=list)
    embeddings: List[List[float]] = Field(default_factory=list)
    uploaded_at: datetime = Field(default_factory=datetime.now)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class VectorDocument(BaseModel):
    """One embedded chunk stored in a vector store."""

    id: str
    content: str
    embedding: List[float]
    metadata: Dict[str, Any] = Field(default_factory=dict)


class VectorSearchHit(BaseModel):
    id: str
    content: str
    score: float
    metadata: Dict[str, Any] = Field(default_factory=dict)


class VectorSearchOptions(BaseModel):
    top_k: int = Field(default=10, ge=1)
    min_score: float = 0.0
    document_id: Optional[str] = None
