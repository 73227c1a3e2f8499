"""Shared models for the retrieval system."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from hybrid_rag.storage.schemas import GraphQueryResult


class QueryStrategy(str, Enum):
    """Which channel a question is expected to benefit from most."""

    GRAPH_PRIMARY = "graph_primary"
    VECTOR_PRIMARY = "vector_primary"
    BALANCED = "balanced"


class RetrievedChunk(BaseModel):
    """A chunk returned by the vector retriever."""

    id: str
    content: str
    similarity: float
    source: str = "Unknown"
    metadata: Dict[str, Any] = Field(default_factory=dict)


class VectorSearchResult(BaseModel):
    """Vector channel entry of a hybrid result."""

    id: str
    content: str
    score: float
    metadata: Dict[str, Any] = Field(default_factory=dict)


class HybridQueryOptions(BaseModel):
    """Per-query switches; unset values fall back to configuration."""

    model_config = ConfigDict(extra="forbid")

    use_vector: bool = True
    use_graph: bool = True
    max_results: Optional[int] = Field(default=None, ge=1)
    timeout_seconds: Optional[float] = Field(default=None, gt=0.0)


class HybridSearchResult(BaseModel):
    """Fused outcome of the vector and graph channels."""

    vector_results: List[VectorSearchResult] = Field(default_factory=list)
    graph_results: GraphQueryResult = Field(default_factory=GraphQueryResult)
    combined_score: float = Field(default=0.0, ge=0.0, le=1.0)
    explanation: str = ""
    sources: List[str] = Field(default_factory=list)
    strategy: QueryStrategy = QueryStrategy.BALANCED
