"""Semantic chunk retrieval: embed the question and search the vector store."""

from __future__ import annotations

import time
from typing import List, Optional

from loguru import logger

from hybrid_rag.retrieval.models import RetrievedChunk
from hybrid_rag.storage.schemas import VectorSearchOptions
from hybrid_rag.storage.vector_store import VectorStore
from hybrid_rag.utils.config import VectorSearchConfig
from hybrid_rag.utils.embeddings import Embedder
from hybrid_rag.utils.similarity import FALLBACK_EMBEDDING_DIMENSION, fallback_embedding


class VectorRetriever:
    """Retrieves chunks by cosine similarity to the question embedding."""

    def __init__(
        self,
        embedder: Embedder,
        vector_store: VectorStore,
        config: Optional[VectorSearchConfig] = None,
        *,
        fallback_dimension: int = FALLBACK_EMBEDDING_DIMENSION,
    ) -> None:
        self.embedder = embedder
        self.vector_store = vector_store
        self.config = config or VectorSearchConfig()
        self.fallback_dimension = fallback_dimension

    def retrieve(
        self,
        question: str,
        top_k: Optional[int] = None,
        document_id: Optional[str] = None,
    ) -> List[RetrievedChunk]:
        """Return the ``top_k`` most similar chunks, best first.

        Raises:
            ValueError: If the question is empty
        """
        if not question or not question.strip():
            raise ValueError("Question must not be empty")

        start_time = time.perf_counter()
        embedding = self._embed(question)
        hits = self.vector_store.search(
            question,
            embedding,
            VectorSearchOptions(
                top_k=top_k or self.config.top_k,
                min_score=self.config.min_score,
                document_id=document_id,
            ),
        )

        chunks = [
            RetrievedChunk(
                id=hit.id,
                content=hit.content,
                similarity=hit.score,
                source=str(hit.metadata.get("source") or "Unknown"),
                metadata=dict(hit.metadata),
            )
            for hit in hits
        ]
        logger.debug(
            "Vector retrieval complete",
            results=len(chunks),
            elapsed_ms=round((time.perf_counter() - start_time) * 1000, 1),
        )
        return chunks

    def _embed(self, question: str) -> List[float]:
        try:
            embedding = list(self.embedder.embed(question))
            if embedding:
                return embedding
            logger.warning("Embedder returned an empty query vector; using fallback embedding")
        except Exception as e:
            logger.warning(f"Query embedding failed, using fallback embedding: {e}")
        return fallback_embedding(question, self.fallback_dimension)
