"""String similarity rules used to decide whether two entity mentions co-refer."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict
from rapidfuzz.distance import Levenshtein

from hybrid_rag.utils.config import NormalizationConfig

MatchReason = Literal["exact", "substring", "levenshtein"]


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance with unit-cost insertions, deletions and substitutions."""
    return int(Levenshtein.distance(a, b))


def levenshtein_similarity(a: str, b: str) -> float:
    """``1 - distance / max(len(a), len(b))``; two empty strings are identical."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / longest


class EntityMatch(BaseModel):
    """Outcome of comparing two entity mentions."""

    model_config = ConfigDict(frozen=True)

    source: str
    target: str
    score: float  # 0-1 normalized Levenshtein similarity of the normalized texts
    passed: bool
    reason: MatchReason | None = None


class EntityMatcher:
    """Applies the exact / substring / edit-distance rules to typed mentions."""

    def __init__(self, config: NormalizationConfig | None = None) -> None:
        self.config = config or NormalizationConfig()

    def match_pair(
        self,
        source: str,
        target: str,
        source_type: str | None = None,
        target_type: str | None = None,
    ) -> EntityMatch:
        """Compare two mentions; mentions of different types never match."""
        source_norm = self._normalize(source)
        target_norm = self._normalize(target)
        score = levenshtein_similarity(source_norm, target_norm)

        if source_type != target_type:
            return EntityMatch(source=source, target=target, score=score, passed=False)

        reason: MatchReason | None = None
        if source_norm == target_norm:
            reason = "exact"
        elif (
            (source_norm in target_norm or target_norm in source_norm)
            and abs(len(source_norm) - len(target_norm)) <= self.config.substring_length_tolerance
        ):
            reason = "substring"
        elif score >= self.config.levenshtein_threshold:
            reason = "levenshtein"

        return EntityMatch(
            source=source,
            target=target,
            score=score,
            passed=reason is not None,
            reason=reason,
        )

    def is_similar(
        self,
        source: str,
        target: str,
        source_type: str | None = None,
        target_type: str | None = None,
    ) -> bool:
        return self.match_pair(source, target, source_type, target_type).passed

    @staticmethod
    def _normalize(value: str) -> str:
        return value.lower().strip()
