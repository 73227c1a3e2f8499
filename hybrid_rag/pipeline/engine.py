"""Hybrid RAG engine: ingestion into both stores and hybrid querying.

The engine owns the collaborators (language model, embedder, graph store,
vector store) and wires them into the extractor, graph builder and hybrid
retriever. Collaborators can be injected; anything not injected is created
from configuration in ``initialize()`` and released in ``close()``.
"""

from __future__ import annotations

import threading
import time
from pathlib import Path
from types import TracebackType
from typing import Any, Dict, List, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict

from hybrid_rag.extraction.graph_extractor import GraphExtractor
from hybrid_rag.graph.builder import GraphBuilder
from hybrid_rag.normalization.entity_resolver import EntityResolver
from hybrid_rag.retrieval.hybrid_retriever import HybridRetriever
from hybrid_rag.retrieval.models import HybridQueryOptions, HybridSearchResult
from hybrid_rag.retrieval.vector_retriever import VectorRetriever
from hybrid_rag.storage.graph_store import GraphStore, InMemoryGraphStore
from hybrid_rag.storage.schemas import (
    DELETE_DOCUMENT_QUERY,
    Document,
    GraphQuery,
    GraphValidationResult,
    VectorDocument,
)
from hybrid_rag.storage.vector_store import InMemoryVectorStore, VectorStore
from hybrid_rag.utils.config import Config, HybridSearchConfig, load_config
from hybrid_rag.utils.embeddings import Embedder, EmbeddingGenerator
from hybrid_rag.utils.llm_client import ChatLanguageModel, LanguageModel
from hybrid_rag.utils.logging_setup import setup_logging
from hybrid_rag.utils.similarity import fallback_embedding


class IngestionResult(BaseModel):
    """Result of document ingestion."""

    model_config = ConfigDict(extra="allow")

    document_id: str
    success: bool
    chunks_created: int = 0
    vectors_stored: int = 0
    entities_created: int = 0
    relationships_created: int = 0
    processing_time: float = 0.0
    error: Optional[str] = None


class HybridRAGEngine:
    """Facade over ingestion and hybrid retrieval."""

    def __init__(
        self,
        config: Optional[Config] = None,
        *,
        language_model: Optional[LanguageModel] = None,
        embedder: Optional[Embedder] = None,
        graph_store: Optional[GraphStore] = None,
        vector_store: Optional[VectorStore] = None,
    ) -> None:
        self.config = config or Config()
        self.language_model = language_model
        self.embedder = embedder
        self.graph_store = graph_store
        self.vector_store = vector_store

        self.extractor: Optional[GraphExtractor] = None
        self.builder: Optional[GraphBuilder] = None
        self.retriever: Optional[HybridRetriever] = None

        self._initialized = False
        self._stats_lock = threading.Lock()
        self.stats: Dict[str, int] = {
            "documents_processed": 0,
            "documents_failed": 0,
            "documents_removed": 0,
            "chunks_processed": 0,
            "entities_created": 0,
            "relationships_created": 0,
        }

    @classmethod
    def from_config_file(
        cls,
        config_path: str | Path = "config/config.yaml",
        *,
        configure_logging: bool = True,
        **collaborators: Any,
    ) -> "HybridRAGEngine":
        """Load and validate a YAML config, set up logging, and build an engine.

        Args:
            config_path: Path to YAML configuration file
            configure_logging: Install the configured Loguru sinks first
            **collaborators: Injected ``language_model``, ``embedder``,
                ``graph_store`` or ``vector_store``

        Returns:
            An engine that still needs ``initialize()``
        """
        config = load_config(config_path)
        if configure_logging:
            setup_logging(config.logging)
        logger.info(f"Loaded configuration from {config_path}")
        return cls(config, **collaborators)

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        """Create missing collaborators and wire the components.

        Raises:
            ConnectionError: If a configured backend is unreachable
        """
        if self._initialized:
            return

        if self.language_model is None and self.config.extraction.enable_llm:
            self.language_model = ChatLanguageModel(self.config.llm)
        if self.embedder is None:
            self.embedder = EmbeddingGenerator(self.config.database)
        if self.graph_store is None:
            self.graph_store = self._create_graph_store()
        if self.vector_store is None:
            self.vector_store = self._create_vector_store()

        self.extractor = GraphExtractor(self.language_model, self.config.extraction)
        self.builder = GraphBuilder(
            self.graph_store,
            self.extractor,
            EntityResolver(self.config.normalization),
            self.config.graph,
        )
        self.retriever = HybridRetriever(
            VectorRetriever(
                self.embedder,
                self.vector_store,
                self.config.retrieval.vector_search,
                fallback_dimension=self._embedding_dimension(),
            ),
            self.graph_store,
            self.config.retrieval,
        )

        self._initialized = True
        logger.info(
            "Hybrid RAG engine initialized",
            graph_store=type(self.graph_store).__name__,
            vector_store=type(self.vector_store).__name__,
            language_model=type(self.language_model).__name__ if self.language_model else None,
        )

    def _create_graph_store(self) -> GraphStore:
        if self.config.graph.provider == "neo4j":
            from hybrid_rag.storage.neo4j_manager import Neo4jGraphStore

            store = Neo4jGraphStore(self.config.database)
            store.connect()
            store.create_schema()
            return store
        return InMemoryGraphStore()

    def _create_vector_store(self) -> VectorStore:
        vector_config = self.config.retrieval.vector_search
        if vector_config.provider == "qdrant":
            from hybrid_rag.storage.qdrant_manager import QdrantVectorStore

            store = QdrantVectorStore(
                self.config.database,
                collection=vector_config.collection,
                dimension=self._embedding_dimension(),
            )
            store.create_collection()
            return store
        return InMemoryVectorStore()

    def close(self) -> None:
        """Release store connections."""
        for name, resource in (("graph store", self.graph_store), ("vector store", self.vector_store)):
            close = getattr(resource, "close", None)
            if close is None:
                continue
            try:
                close()
            except Exception as e:
                logger.warning(f"Error closing {name}: {e}")
        self._initialized = False
        logger.info("Hybrid RAG engine closed")

    def __enter__(self) -> "HybridRAGEngine":
        self.initialize()
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.close()

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError("Hybrid RAG engine not initialized. Call initialize() first.")

    # Ingestion

    def process_document(self, document: Document) -> IngestionResult:
        """Embed and store a document's chunks, then build its knowledge graph.

        Raises:
            RuntimeError: If the engine is not initialized
        """
        self._require_initialized()
        start_time = time.time()
        logger.info("Processing document", document_id=document.id, name=document.name)

        try:
            vectors = self._vector_documents(document)
            stored = self.vector_store.add_documents(vectors) if vectors else 0
            structure = self.builder.build_graph(document)
        except Exception as e:
            logger.error(f"Failed to process document {document.id}: {e}")
            with self._stats_lock:
                self.stats["documents_failed"] += 1
            return IngestionResult(
                document_id=document.id,
                success=False,
                processing_time=time.time() - start_time,
                error=str(e),
            )

        result = IngestionResult(
            document_id=document.id,
            success=True,
            chunks_created=len(structure.sections),
            vectors_stored=stored,
            entities_created=len(structure.entities),
            relationships_created=len(structure.relationships),
            processing_time=time.time() - start_time,
        )
        with self._stats_lock:
            self.stats["documents_processed"] += 1
            self.stats["chunks_processed"] += result.chunks_created
            self.stats["entities_created"] += result.entities_created
            self.stats["relationships_created"] += result.relationships_created

        logger.success(
            "Document processed",
            document_id=document.id,
            chunks=result.chunks_created,
            entities=result.entities_created,
            relationships=result.relationships_created,
            seconds=round(result.processing_time, 2),
        )
        return result

    def _vector_documents(self, document: Document) -> List[VectorDocument]:
        precomputed = len(document.embeddings) == len(document.chunks)
        vectors: List[VectorDocument] = []
        for index, chunk in enumerate(document.chunks):
            if precomputed and document.embeddings[index]:
                embedding = list(document.embeddings[index])
            else:
                embedding = self._embed(chunk)
            vectors.append(
                VectorDocument(
                    id=f"{document.id}_{index}",
                    content=chunk,
                    embedding=embedding,
                    metadata={
                        "source": document.name,
                        "chunk_index": index,
                        "document_id": document.id,
                        "timestamp": document.uploaded_at.isoformat(),
                    },
                )
            )
        return vectors

    def _embed(self, text: str) -> List[float]:
        try:
            embedding = list(self.embedder.embed(text))
            if embedding:
                return embedding
            logger.warning("Embedder returned an empty vector; using fallback embedding")
        except Exception as e:
            logger.warning(f"Embedding failed, using fallback embedding: {e}")
        return fallback_embedding(text, self._embedding_dimension())

    def _embedding_dimension(self) -> int:
        if isinstance(self.embedder, EmbeddingGenerator):
            return self.embedder.get_embedding_dimension()
        return self.config.database.fallback_embedding_dimension

    def remove_document(self, document_id: str) -> Dict[str, int]:
        """Delete a document's vectors and every graph node it owns."""
        self._require_initialized()

        vectors_deleted = self.vector_store.delete_document(document_id)
        graph_result = self.graph_store.query(
            GraphQuery(query=DELETE_DOCUMENT_QUERY, parameters={"document_id": document_id})
        )
        with self._stats_lock:
            self.stats["documents_removed"] += 1

        logger.info(
            "Document removed",
            document_id=document_id,
            vectors_deleted=vectors_deleted,
            nodes_deleted=graph_result.result_count,
        )
        return {"vectors_deleted": vectors_deleted, "nodes_deleted": graph_result.result_count}

    # Querying

    def query(self, question: str, options: Optional[HybridQueryOptions] = None) -> HybridSearchResult:
        self._require_initialized()
        return self.retriever.query(question, options)

    # Maintenance

    def update_hybrid_settings(self, **changes: Any) -> HybridSearchConfig:
        self._require_initialized()
        return self.retriever.update_settings(**changes)

    def validate_system(self) -> GraphValidationResult:
        self._require_initialized()
        return self.graph_store.validate_graph()

    def clear_all(self) -> None:
        """Remove everything from both stores and drop extraction caches."""
        self._require_initialized()
        self.graph_store.clear()
        self.vector_store.clear()
        self.extractor.clear_cache()
        logger.warning("Cleared all hybrid RAG data")

    def health_check(self) -> Dict[str, bool]:
        self._require_initialized()
        vector_health = getattr(self.vector_store, "health_check", None)
        if vector_health is None:
            vector_ok = True
        else:
            outcome = vector_health()
            vector_ok = bool(outcome[0] if isinstance(outcome, tuple) else outcome)
        return {"graph_store": bool(self.graph_store.health_check()), "vector_store": vector_ok}

    def get_system_status(self) -> Dict[str, Any]:
        if not self._initialized:
            return {"initialized": False}

        health = self.health_check()
        status: Dict[str, Any] = {
            "initialized": True,
            "healthy": all(health.values()),
            "components": health,
            "graph_store": type(self.graph_store).__name__,
            "vector_store": type(self.vector_store).__name__,
            "language_model": type(self.language_model).__name__ if self.language_model else None,
            "vector_documents": self.vector_store.count(),
            "graph": self.graph_store.get_analytics().model_dump(),
            "extraction_cache": self.extractor.get_cache_stats(),
            "hybrid_settings": self.retriever.hybrid_config.model_dump(),
        }
        if isinstance(self.embedder, EmbeddingGenerator):
            status["embeddings"] = self.embedder.get_cache_stats()
        return status

    def get_statistics(self) -> Dict[str, Any]:
        with self._stats_lock:
            stats: Dict[str, Any] = dict(self.stats)
        if self.retriever is not None:
            stats["queries"] = self.retriever.get_statistics()
        return stats
