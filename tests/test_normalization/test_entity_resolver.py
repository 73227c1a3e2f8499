"""Tests for EntityResolver grouping and canonicalization."""

from __future__ import annotations

import itertools
from typing import List

import pytest

from hybrid_rag.extraction.models import ExtractedEntity
from hybrid_rag.normalization.entity_resolver import EntityResolver, resolved_entity_id


def _entity(text: str, entity_type: str = "ORGANIZATION", confidence: float = 0.5, **props) -> ExtractedEntity:
    return ExtractedEntity(
        text=text,
        type=entity_type,
        start_offset=0,
        end_offset=len(text),
        confidence=confidence,
        properties=props,
    )


def test_typo_variants_merge_into_highest_confidence_form() -> None:
    resolver = EntityResolver()

    result = resolver.resolve(
        [_entity("Acme Corporatoin", confidence=0.7), _entity("Acme Corporation", confidence=0.9)]
    )

    assert len(result.resolved_entities) == 1
    resolved = result.resolved_entities[0]
    assert resolved.canonical_name == "Acme Corporation"
    assert resolved.aliases == ["Acme Corporatoin"]
    assert resolved.confidence == pytest.approx(0.8)
    assert resolved.type == "ORGANIZATION"

    assert len(result.merged_entities) == 1
    assert result.merged_entities[0].canonical == "Acme Corporation"
    assert result.merged_entities[0].confidence == pytest.approx(0.9)


def test_confidence_tie_prefers_longer_text() -> None:
    resolver = EntityResolver()

    result = resolver.resolve([_entity("IBM Corp"), _entity("IBM Corps")])

    assert result.resolved_entities[0].canonical_name == "IBM Corps"
    assert result.resolved_entities[0].aliases == ["IBM Corp"]


def test_full_tie_keeps_first_mention() -> None:
    result = EntityResolver().resolve([_entity("acme"), _entity("ACME")])

    assert result.resolved_entities[0].canonical_name == "acme"
    assert result.resolved_entities[0].aliases == ["ACME"]


def test_single_entity_is_copied() -> None:
    entity = ExtractedEntity(
        text="Paris",
        type="LOCATION",
        confidence=0.8,
        properties={"country": "France"},
        aliases=["Paris", "City of Light", "City of Light"],
    )

    result = EntityResolver().resolve([entity])

    resolved = result.resolved_entities[0]
    assert resolved.canonical_name == "Paris"
    assert resolved.aliases == ["City of Light"]
    assert resolved.properties == {"country": "France"}
    assert resolved.confidence == pytest.approx(0.8)
    assert result.merged_entities == []


def test_properties_merge_distinct_values_into_lists() -> None:
    result = EntityResolver().resolve(
        [
            _entity("Acme", sector="tech", hq="NYC"),
            _entity("acme", sector="finance", hq="NYC"),
            _entity("ACME", sector="tech", founded=1990),
        ]
    )

    properties = result.resolved_entities[0].properties
    assert properties["sector"] == ["tech", "finance"]
    assert properties["hq"] == "NYC"
    assert properties["founded"] == 1990


def test_different_types_are_never_grouped() -> None:
    result = EntityResolver().resolve(
        [_entity("Washington", "PERSON"), _entity("Washington", "LOCATION")]
    )

    assert len(result.resolved_entities) == 2
    assert {r.type for r in result.resolved_entities} == {"PERSON", "LOCATION"}

    assert len(result.ambiguous_entities) == 1
    ambiguous = result.ambiguous_entities[0]
    assert ambiguous.entity == "Washington"
    assert sorted(ambiguous.possible_resolutions) == sorted(
        r.id for r in result.resolved_entities
    )


def test_ids_are_deterministic() -> None:
    first = EntityResolver().resolve([_entity("Acme Corp")])
    second = EntityResolver().resolve([_entity("Acme Corp")])

    assert first.resolved_entities[0].id == second.resolved_entities[0].id
    assert first.resolved_entities[0].id.startswith("organization_acme_corp_")
    assert resolved_entity_id("Acme Corp", "ORGANIZATION") == first.resolved_entities[0].id


def test_grouping_compares_against_seed_only() -> None:
    # The third mention is close to the second (0.9) but not to the seed (0.75).
    entities = [
        _entity("abcdefghijklmnopqrst", "CONCEPT"),
        _entity("abcdefghijklmnopqxyz", "CONCEPT"),
        _entity("abcdefghijklmnuvqxyz", "CONCEPT"),
    ]

    groups = EntityResolver().group_entities(entities)

    assert [[e.text for e in g] for g in groups] == [
        ["abcdefghijklmnopqrst", "abcdefghijklmnopqxyz"],
        ["abcdefghijklmnuvqxyz"],
    ]


MIXED: List[ExtractedEntity] = [
    _entity("Acme Corp", confidence=0.6),
    _entity("Acme Corps", confidence=0.7),
    _entity("Globex", confidence=0.9),
    _entity("Acme Corp", "PERSON", confidence=0.4),
    _entity("Globexx", confidence=0.5),
    _entity("Initech", "CONCEPT", confidence=0.3),
]


@pytest.mark.parametrize("order", list(itertools.permutations(range(len(MIXED)))))
def test_resolution_partitions_input_and_respects_types(order) -> None:
    entities = [MIXED[i] for i in order]
    resolver = EntityResolver()

    groups = resolver.group_entities(entities)

    flattened = [id(e) for group in groups for e in group]
    assert sorted(flattened) == sorted(id(e) for e in entities)
    for group in groups:
        assert len({e.type for e in group}) == 1

    result = resolver.resolve(entities)
    assert len(result.resolved_entities) == len(groups)
    for resolved in result.resolved_entities:
        assert resolved.canonical_name not in resolved.aliases
        assert len(resolved.aliases) == len(set(resolved.aliases))
