"""Regex-based entity extractor used when the language model is unavailable."""

import re
from typing import List, Pattern, Tuple

from loguru import logger

from hybrid_rag.extraction.models import ExtractedEntity

_MONTHS = (
    "January|February|March|April|May|June|July|August|September|October|November|December"
)

# Applied in this order; a later pattern never claims a span that overlaps an earlier match.
DEFAULT_PATTERNS: List[Tuple[str, str]] = [
    (
        "ORGANIZATION",
        r"\b(?:[A-Z][A-Za-z&]*\s)+(?:Inc|Corp|Corporation|Ltd|LLC|University|Institute|Company)\b",
    ),
    (
        "LOCATION",
        r"\b(?:[A-Z][a-z]+\s)+(?:City|State|Country|County|Province|Region|District)\b",
    ),
    ("DATE", rf"\b(?:{_MONTHS})\s+\d{{1,2}}(?:,\s*\d{{4}})?\b"),
    ("DATE", r"\b\d{1,2}/\d{1,2}/\d{4}\b"),
    ("DATE", r"\b\d{4}\b"),
    ("PERSON", r"\b[A-Z][a-z]+\s[A-Z][a-z]+\b"),
]


class PatternEntityExtractor:
    """Extracts entities with fixed capitalization and date heuristics."""

    def __init__(
        self,
        confidence: float = 0.6,
        patterns: List[Tuple[str, str]] | None = None,
    ) -> None:
        self.confidence = confidence
        self.patterns: List[Tuple[str, Pattern[str]]] = [
            (entity_type, re.compile(pattern)) for entity_type, pattern in (patterns or DEFAULT_PATTERNS)
        ]

    def extract_entities(self, text: str) -> List[ExtractedEntity]:
        """Return entities ordered by position in ``text``."""
        if not text:
            return []

        claimed: List[Tuple[int, int]] = []
        entities: List[ExtractedEntity] = []

        for entity_type, pattern in self.patterns:
            for match in pattern.finditer(text):
                start, end = match.span()
                if any(start < c_end and c_start < end for c_start, c_end in claimed):
                    continue
                claimed.append((start, end))
                entities.append(
                    ExtractedEntity(
                        text=match.group(0),
                        type=entity_type,
                        start_offset=start,
                        end_offset=end,
                        confidence=self.confidence,
                        properties={"extraction_method": "fallback"},
                    )
                )

        entities.sort(key=lambda e: e.start_offset)
        logger.debug(f"Pattern extraction found {len(entities)} entities")
        return entities
