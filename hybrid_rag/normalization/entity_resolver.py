"""Entity resolution: collapse co-referring mentions into canonical entities.

Grouping is a single greedy pass over the input order. Each ungrouped mention
seeds a group and pulls in every later ungrouped mention similar to the seed.
The result is a partition of the input, but it depends on input order: two
permutations of the same mentions can yield different groups.
"""

from __future__ import annotations

import hashlib
import re
from typing import Dict, List, Sequence

from loguru import logger

from hybrid_rag.extraction.models import (
    AmbiguousEntity,
    EntityResolutionResult,
    ExtractedEntity,
    MergedEntity,
    Properties,
    ResolvedEntity,
)
from hybrid_rag.normalization.fuzzy_matcher import EntityMatcher
from hybrid_rag.utils.config import NormalizationConfig

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def resolved_entity_id(text: str, entity_type: str) -> str:
    """Deterministic id of the form ``<type>_<slug>_<hash8>``."""
    slug = _NON_ALNUM.sub("_", text.lower())
    digest = hashlib.md5(f"{entity_type}|{text}".encode("utf-8")).hexdigest()[:8]
    return f"{entity_type.lower()}_{slug}_{digest}"


class EntityResolver:
    """Groups similar entity mentions and selects a canonical form per group."""

    def __init__(
        self,
        config: NormalizationConfig | None = None,
        matcher: EntityMatcher | None = None,
    ) -> None:
        self.config = config or NormalizationConfig()
        self.matcher = matcher or EntityMatcher(self.config)

    def resolve(self, entities: Sequence[ExtractedEntity]) -> EntityResolutionResult:
        """Partition ``entities`` into equivalence classes and canonicalize each."""
        logger.info("Resolving {} entities", len(entities))

        groups = self.group_entities(entities)

        resolved: List[ResolvedEntity] = []
        merged: List[MergedEntity] = []
        seen_ids: Dict[str, int] = {}

        for group in groups:
            if len(group) == 1:
                entity = group[0]
                resolved_entity = ResolvedEntity(
                    id=self._unique_id(entity.text, entity.type, seen_ids),
                    canonical_name=entity.text,
                    type=entity.type,
                    aliases=self._unique_aliases(entity.aliases, entity.text),
                    properties=dict(entity.properties),
                    confidence=entity.confidence,
                )
            else:
                canonical = self.select_canonical(group)
                alias_candidates = [e.text for e in group]
                for member in group:
                    alias_candidates.extend(member.aliases)
                aliases = self._unique_aliases(alias_candidates, canonical.text)

                resolved_entity = ResolvedEntity(
                    id=self._unique_id(canonical.text, canonical.type, seen_ids),
                    canonical_name=canonical.text,
                    type=canonical.type,
                    aliases=aliases,
                    properties=self.merge_properties(group),
                    confidence=sum(e.confidence for e in group) / len(group),
                )
                merged.append(
                    MergedEntity(
                        canonical=canonical.text,
                        aliases=aliases,
                        confidence=canonical.confidence,
                    )
                )
            resolved.append(resolved_entity)

        ambiguous = self._find_ambiguous(groups, resolved)

        logger.debug(
            "Entity resolution complete",
            input=len(entities),
            resolved=len(resolved),
            merged=len(merged),
            ambiguous=len(ambiguous),
        )
        return EntityResolutionResult(
            resolved_entities=resolved,
            merged_entities=merged,
            ambiguous_entities=ambiguous,
        )

    def group_entities(self, entities: Sequence[ExtractedEntity]) -> List[List[ExtractedEntity]]:
        groups: List[List[ExtractedEntity]] = []
        grouped: set[int] = set()

        for i, seed in enumerate(entities):
            if i in grouped:
                continue
            group = [seed]
            grouped.add(i)

            for j in range(i + 1, len(entities)):
                if j in grouped:
                    continue
                other = entities[j]
                if self.matcher.is_similar(seed.text, other.text, seed.type, other.type):
                    group.append(other)
                    grouped.add(j)

            groups.append(group)

        return groups

    @staticmethod
    def select_canonical(group: Sequence[ExtractedEntity]) -> ExtractedEntity:
        """Highest confidence wins; ties go to the longer text, then the earlier mention."""
        best = group[0]
        for current in group[1:]:
            if current.confidence > best.confidence:
                best = current
            elif current.confidence == best.confidence and len(current.text) > len(best.text):
                best = current
        return best

    @staticmethod
    def merge_properties(group: Sequence[ExtractedEntity]) -> Properties:
        """Key-wise union; distinct values for the same key are collected into a list."""
        merged: Properties = {}
        for entity in group:
            for key, value in entity.properties.items():
                if key not in merged:
                    merged[key] = list(value) if isinstance(value, list) else value
                    continue

                existing = merged[key]
                incoming = value if isinstance(value, list) else [value]
                if isinstance(existing, list):
                    for item in incoming:
                        if item not in existing:
                            existing.append(item)
                elif existing != value:
                    combined = [existing]
                    for item in incoming:
                        if item not in combined:
                            combined.append(item)
                    merged[key] = combined if len(combined) > 1 else existing
        return merged

    @staticmethod
    def _unique_aliases(candidates: Sequence[str], canonical: str) -> List[str]:
        aliases: List[str] = []
        for alias in candidates:
            if alias and alias != canonical and alias not in aliases:
                aliases.append(alias)
        return aliases

    @staticmethod
    def _unique_id(text: str, entity_type: str, seen: Dict[str, int]) -> str:
        base = resolved_entity_id(text, entity_type)
        count = seen.get(base, 0)
        seen[base] = count + 1
        return base if count == 0 else f"{base}_{count + 1}"

    @staticmethod
    def _find_ambiguous(
        groups: Sequence[Sequence[ExtractedEntity]], resolved: Sequence[ResolvedEntity]
    ) -> List[AmbiguousEntity]:
        """Surface forms that ended up in groups of more than one type."""
        by_surface: Dict[str, Dict[str, List[str]]] = {}
        first_text: Dict[str, str] = {}

        for group, resolved_entity in zip(groups, resolved):
            for member in group:
                surface = member.text.lower().strip()
                first_text.setdefault(surface, member.text)
                ids_by_type = by_surface.setdefault(surface, {})
                ids = ids_by_type.setdefault(member.type, [])
                if resolved_entity.id not in ids:
                    ids.append(resolved_entity.id)

        ambiguous: List[AmbiguousEntity] = []
        for surface, ids_by_type in by_surface.items():
            if len(ids_by_type) < 2:
                continue
            resolutions = [rid for ids in ids_by_type.values() for rid in ids]
            ambiguous.append(
                AmbiguousEntity(entity=first_text[surface], possible_resolutions=resolutions)
            )
        return ambiguous
