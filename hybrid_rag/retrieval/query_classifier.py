"""Keyword heuristics over the question text.

``classify`` is advisory: the executor reports the strategy but always runs
every enabled channel. ``extract_search_terms`` picks the words used for
graph search.
"""

from __future__ import annotations

import re
from typing import List

from hybrid_rag.retrieval.models import QueryStrategy

GRAPH_INDICATORS = (
    "how are",
    "what is the relationship",
    "connected to",
    "related",
    "who authored",
    "what cites",
    "mentioned in",
    "associated with",
    "compare",
    "contrast",
    "difference between",
    "similar to",
)

VECTOR_INDICATORS = (
    "what does",
    "explain",
    "describe",
    "definition of",
    "summary of",
    "key points",
    "main ideas",
    "overview",
)

STOPWORDS = frozenset(
    {
        "the", "is", "at", "which", "on", "a", "an", "and", "or", "but",
        "in", "with", "to", "for", "of", "as", "by",
    }
)

_PUNCTUATION = re.compile(r"[^\w\s]")


def count_indicators(text: str, indicators: tuple[str, ...]) -> int:
    """Number of indicator phrases present in ``text``; each counts once."""
    lowered = text.lower()
    return sum(1 for phrase in indicators if phrase in lowered)


def classify(question: str) -> QueryStrategy:
    graph_score = count_indicators(question, GRAPH_INDICATORS)
    vector_score = count_indicators(question, VECTOR_INDICATORS)

    if graph_score > vector_score:
        return QueryStrategy.GRAPH_PRIMARY
    if vector_score > graph_score:
        return QueryStrategy.VECTOR_PRIMARY
    return QueryStrategy.BALANCED


def extract_search_terms(question: str, max_terms: int = 5, min_length: int = 3) -> List[str]:
    """Lower-cased non-stopword words of at least ``min_length`` chars, in order."""
    words = _PUNCTUATION.sub(" ", question.lower()).split()
    terms = [word for word in words if len(word) >= min_length and word not in STOPWORDS]
    return terms[:max_terms]
