"""Extraction package exports."""

from hybrid_rag.extraction.graph_extractor import GraphExtractor
from hybrid_rag.extraction.models import (
    EntityExtractionResult,
    EntityResolutionResult,
    ExtractedEntity,
    ExtractedRelationship,
    ResolvedEntity,
)
from hybrid_rag.extraction.pattern_extractor import PatternEntityExtractor

__all__ = [
    "EntityExtractionResult",
    "EntityResolutionResult",
    "ExtractedEntity",
    "ExtractedRelationship",
    "GraphExtractor",
    "PatternEntityExtractor",
    "ResolvedEntity",
]
