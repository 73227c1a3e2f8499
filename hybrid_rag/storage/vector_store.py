"""Vector store interface and an in-process cosine implementation."""

import logging
import threading
from typing import Dict, List, Optional, Protocol, Sequence, runtime_checkable

from hybrid_rag.storage.schemas import VectorDocument, VectorSearchHit, VectorSearchOptions
from hybrid_rag.utils.similarity import cosine_similarity

logger = logging.getLogger(__name__)


@runtime_checkable
class VectorStore(Protocol):
    """Persistence contract for embedded chunks."""

    def add_documents(self, documents: Sequence[VectorDocument]) -> int: ...

    def search(
        self,
        query: str,
        embedding: Sequence[float],
        options: Optional[VectorSearchOptions] = None,
    ) -> List[VectorSearchHit]: ...

    def delete_document(self, document_id: str) -> int: ...

    def clear(self) -> None: ...

    def count(self) -> int: ...


class InMemoryVectorStore:
    """Brute-force cosine search over embeddings held in a dictionary.

    Chunks are grouped by ``metadata["document_id"]`` so a whole document can
    be dropped at once. Stored vectors whose dimension differs from the query
    are skipped.
    """

    def __init__(self) -> None:
        self._documents: Dict[str, VectorDocument] = {}
        self._lock = threading.RLock()

    def add_documents(self, documents: Sequence[VectorDocument]) -> int:
        """Insert or replace documents by id.

        Raises:
            ValueError: If a document has an empty embedding
        """
        with self._lock:
            for document in documents:
                if not document.embedding:
                    raise ValueError(f"Document {document.id} has an empty embedding")
                self._documents[document.id] = document
        logger.debug(f"Stored {len(documents)} vectors ({len(self._documents)} total)")
        return len(documents)

    def search(
        self,
        query: str,
        embedding: Sequence[float],
        options: Optional[VectorSearchOptions] = None,
    ) -> List[VectorSearchHit]:
        options = options or VectorSearchOptions()
        with self._lock:
            candidates = list(self._documents.values())

        hits: List[VectorSearchHit] = []
        skipped = 0
        for document in candidates:
            if options.document_id and document.metadata.get("document_id") != options.document_id:
                continue
            if len(document.embedding) != len(embedding):
                skipped += 1
                continue
            score = cosine_similarity(embedding, document.embedding)
            if score < options.min_score:
                continue
            hits.append(
                VectorSearchHit(
                    id=document.id,
                    content=document.content,
                    score=score,
                    metadata=dict(document.metadata),
                )
            )

        if skipped:
            logger.debug(f"Skipped {skipped} vectors with mismatched dimension")

        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[: options.top_k]

    def get(self, document_id: str) -> Optional[VectorDocument]:
        with self._lock:
            return self._documents.get(document_id)

    def delete_document(self, document_id: str) -> int:
        """Remove every chunk whose metadata belongs to ``document_id``."""
        with self._lock:
            doomed = [
                key
                for key, document in self._documents.items()
                if document.metadata.get("document_id") == document_id
            ]
            for key in doomed:
                del self._documents[key]
        logger.info(f"Deleted {len(doomed)} vectors for document {document_id}")
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._documents.clear()

    def count(self) -> int:
        with self._lock:
            return len(self._documents)

    def close(self) -> None:
        pass
