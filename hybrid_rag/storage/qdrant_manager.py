"""Qdrant-backed vector store for document chunk embeddings.

Chunks live in a single cosine collection with a keyword payload index on
``document_id`` so a document's chunks can be removed with one filter.
Setting ``qdrant_location`` (for example ``":memory:"``) runs the client in
local mode without a server.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple

from qdrant_client import QdrantClient
from qdrant_client.http import models
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    HnswConfigDiff,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    VectorParams,
)

from hybrid_rag.storage.schemas import VectorDocument, VectorSearchHit, VectorSearchOptions
from hybrid_rag.utils.config import DatabaseConfig

logger = logging.getLogger(__name__)

# Qdrant point ids must be unsigned ints or UUIDs; arbitrary chunk ids are
# mapped onto a stable UUID and kept in the payload.
_POINT_NAMESPACE = uuid.UUID("8d6f3a52-3c1e-4b8e-9d0a-6f1f2b7c4e15")


def point_id(chunk_id: str) -> str:
    try:
        return str(uuid.UUID(str(chunk_id)))
    except ValueError:
        return str(uuid.uuid5(_POINT_NAMESPACE, str(chunk_id)))


class QdrantVectorStore:
    """Vector store on a Qdrant collection.

    Attributes:
        client: Qdrant client instance
        config: Database configuration
        collection: Name of the chunk collection
        dimension: Vector size of the collection
    """

    def __init__(
        self,
        config: DatabaseConfig,
        collection: str = "document_chunks",
        dimension: Optional[int] = None,
    ) -> None:
        """Connect to Qdrant.

        Raises:
            ConnectionError: If unable to connect to Qdrant
        """
        self.config = config
        self.collection = collection
        self.dimension = dimension or config.embedding_dimension

        try:
            if config.qdrant_location:
                self.client = QdrantClient(
                    location=config.qdrant_location,
                    api_key=config.qdrant_api_key or None,
                    timeout=30.0,
                    prefer_grpc=False,
                )
                logger.info(f"Connected to Qdrant in local mode at {config.qdrant_location}")
            else:
                kwargs: Dict[str, Any] = {
                    "host": config.qdrant_host,
                    "port": config.qdrant_port,
                    "https": config.qdrant_https,
                    "timeout": 30.0,
                }
                if config.qdrant_api_key:
                    kwargs["api_key"] = config.qdrant_api_key
                self.client = QdrantClient(**kwargs)
                logger.info(f"Connected to Qdrant at {config.qdrant_host}:{config.qdrant_port}")

            self.client.get_collections()
        except Exception as e:
            logger.error(f"Failed to connect to Qdrant: {e}")
            raise ConnectionError(f"Unable to connect to Qdrant: {e}") from e

    def create_collection(self, recreate: bool = False, hnsw_m: int = 16, hnsw_ef_construct: int = 100) -> None:
        """Create the chunk collection and its ``document_id`` index if missing."""
        if recreate and self.collection_exists():
            self.client.delete_collection(collection_name=self.collection)
            logger.info(f"Deleted collection: {self.collection}")

        if self.collection_exists():
            return

        self.client.create_collection(
            collection_name=self.collection,
            vectors_config=VectorParams(
                size=self.dimension,
                distance=Distance.COSINE,
                hnsw_config=HnswConfigDiff(m=hnsw_m, ef_construct=hnsw_ef_construct),
            ),
        )
        self.client.create_payload_index(
            collection_name=self.collection,
            field_name="document_id",
            field_schema=PayloadSchemaType.KEYWORD,
        )
        logger.info(f"Created collection: {self.collection} (dimension={self.dimension})")

    def collection_exists(self) -> bool:
        try:
            collections = self.client.get_collections().collections
            return any(col.name == self.collection for col in collections)
        except Exception as e:
            logger.error(f"Error checking collection existence: {e}")
            return False

    def add_documents(self, documents: Sequence[VectorDocument], batch_size: int = 100) -> int:
        """Upsert chunks with their embeddings.

        Raises:
            ValueError: If an embedding does not match the collection dimension
        """
        if not documents:
            logger.warning("No chunks to upsert")
            return 0

        for document in documents:
            if len(document.embedding) != self.dimension:
                raise ValueError(
                    f"Embedding for {document.id} has dimension {len(document.embedding)}, "
                    f"collection expects {self.dimension}"
                )

        self.create_collection()
        total = 0
        for i in range(0, len(documents), batch_size):
            batch = documents[i : i + batch_size]
            points = [
                PointStruct(
                    id=point_id(document.id),
                    vector=list(document.embedding),
                    payload=self._payload(document),
                )
                for document in batch
            ]
            self.client.upsert(collection_name=self.collection, points=points, wait=True)
            total += len(points)

        logger.info(f"Upserted {total} chunks to {self.collection}")
        return total

    @staticmethod
    def _payload(document: VectorDocument) -> Dict[str, Any]:
        payload = dict(document.metadata)
        payload["chunk_id"] = document.id
        payload["content"] = document.content
        if "document_id" in payload:
            payload["document_id"] = str(payload["document_id"])
        return payload

    def search(
        self,
        query: str,
        embedding: Sequence[float],
        options: Optional[VectorSearchOptions] = None,
    ) -> List[VectorSearchHit]:
        options = options or VectorSearchOptions()
        if not self.collection_exists():
            return []

        query_filter = None
        if options.document_id:
            query_filter = Filter(
                must=[FieldCondition(key="document_id", match=MatchValue(value=options.document_id))]
            )

        try:
            resp = self.client.query_points(
                collection_name=self.collection,
                query=list(embedding),
                limit=options.top_k,
                score_threshold=options.min_score,
                query_filter=query_filter,
                with_payload=True,
                with_vectors=False,
            )
        except Exception as e:
            logger.error(f"Failed to search chunks: {e}")
            raise

        hits: List[VectorSearchHit] = []
        for point in getattr(resp, "points", []) or []:
            payload = dict(point.payload or {})
            chunk_id = str(payload.pop("chunk_id", point.id))
            content = str(payload.pop("content", ""))
            hits.append(VectorSearchHit(id=chunk_id, content=content, score=point.score, metadata=payload))

        logger.debug(f"Found {len(hits)} chunks for query with score >= {options.min_score}")
        return hits

    def delete_document(self, document_id: str) -> int:
        """Delete all chunks belonging to a document; returns the number removed."""
        if not self.collection_exists():
            return 0

        doc_filter = Filter(
            must=[FieldCondition(key="document_id", match=MatchValue(value=str(document_id)))]
        )
        try:
            removed = self.client.count(
                collection_name=self.collection, count_filter=doc_filter, exact=True
            ).count
            self.client.delete(
                collection_name=self.collection,
                points_selector=models.FilterSelector(filter=doc_filter),
            )
        except Exception as e:
            logger.error(f"Failed to delete chunks for document: {e}")
            raise

        logger.info(f"Deleted {removed} chunks for document {document_id}")
        return removed

    def count(self) -> int:
        if not self.collection_exists():
            return 0
        return self.client.count(collection_name=self.collection, exact=True).count

    def clear(self) -> None:
        """Drop and recreate the collection."""
        self.create_collection(recreate=True)

    def health_check(self) -> Tuple[bool, str]:
        """Check if Qdrant is reachable and the collection exists."""
        try:
            self.client.get_collections()
        except Exception as e:
            message = f"Qdrant health check failed: {e}"
            logger.error(message)
            return False, message

        if self.collection_exists():
            return True, "Qdrant is healthy."
        return False, f"Qdrant is accessible but missing collection: {self.collection}"

    def close(self) -> None:
        try:
            if hasattr(self, "client"):
                self.client.close()
                logger.info("Closed Qdrant client connection")
        except Exception as e:
            logger.warning(f"Error closing Qdrant client: {e}")

    def __enter__(self) -> "QdrantVectorStore":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
