"""Normalization package."""

from hybrid_rag.normalization.entity_resolver import EntityResolver, resolved_entity_id
from hybrid_rag.normalization.fuzzy_matcher import (
    EntityMatch,
    EntityMatcher,
    levenshtein_distance,
    levenshtein_similarity,
)

__all__ = [
    "EntityMatch",
    "EntityMatcher",
    "EntityResolver",
    "levenshtein_distance",
    "levenshtein_similarity",
    "resolved_entity_id",
]
