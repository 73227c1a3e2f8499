"""Pipeline orchestrators for end-to-end workflows."""

from hybrid_rag.pipeline.engine import HybridRAGEngine, IngestionResult

__all__ = ["HybridRAGEngine", "IngestionResult"]
