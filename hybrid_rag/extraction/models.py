"""Shared data models for extraction and resolution."""

import json
from typing import Any, Dict, List, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Scalar = Union[str, int, float, bool, None]
PropertyValue = Union[Scalar, List[Scalar]]
Properties = Dict[str, PropertyValue]


def coerce_property_value(value: Any) -> PropertyValue:
    """Reduce an arbitrary parsed value to a scalar or a flat list of scalars.

    Nested structures are JSON-encoded to strings.
    """
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, (list, tuple, set)):
        items: List[Scalar] = []
        for item in value:
            if item is None or isinstance(item, (str, bool, int, float)):
                items.append(item)
            else:
                items.append(json.dumps(item, default=str, sort_keys=True))
        return items
    return json.dumps(value, default=str, sort_keys=True)


def coerce_properties(raw: Any) -> Properties:
    if not isinstance(raw, dict):
        return {}
    return {str(key): coerce_property_value(value) for key, value in raw.items()}


class ExtractedEntity(BaseModel):
    """An entity mention found in a single chunk; offsets are chunk-relative."""

    model_config = ConfigDict(extra="forbid")

    text: str
    type: str = "CONCEPT"
    start_offset: int = 0
    end_offset: int = 0
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    properties: Properties = Field(default_factory=dict)
    aliases: List[str] = Field(default_factory=list)

    @field_validator("properties", mode="before")
    @classmethod
    def _coerce_properties(cls, value: Any) -> Properties:
        return coerce_properties(value)


class ExtractedRelationship(BaseModel):
    """A directed relationship candidate between two entity texts."""

    model_config = ConfigDict(extra="forbid")

    source_entity: str
    target_entity: str
    relationship_type: str = "RELATES_TO"
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    context: str = ""
    properties: Properties = Field(default_factory=dict)

    @field_validator("properties", mode="before")
    @classmethod
    def _coerce_properties(cls, value: Any) -> Properties:
        return coerce_properties(value)

    @model_validator(mode="after")
    def _check_endpoints(self) -> "ExtractedRelationship":
        if not self.source_entity.strip() or not self.target_entity.strip():
            raise ValueError("Relationship endpoints must be non-empty")
        if self.source_entity == self.target_entity:
            raise ValueError("Relationship source and target must differ")
        return self


class EntityExtractionResult(BaseModel):
    """Output of one ``GraphExtractor.extract`` call."""

    entities: List[ExtractedEntity] = Field(default_factory=list)
    relationships: List[ExtractedRelationship] = Field(default_factory=list)
    confidence: float = 0.0
    processing_time_ms: float = 0.0


class ResolvedEntity(BaseModel):
    """Canonical representative of one equivalence class of mentions."""

    id: str
    canonical_name: str
    type: str
    aliases: List[str] = Field(default_factory=list)
    properties: Properties = Field(default_factory=dict)
    confidence: float = 0.0


class MergedEntity(BaseModel):
    canonical: str
    aliases: List[str]
    confidence: float


class AmbiguousEntity(BaseModel):
    entity: str
    possible_resolutions: List[str]


class EntityResolutionResult(BaseModel):
    """Output of ``EntityResolver.resolve``."""

    resolved_entities: List[ResolvedEntity] = Field(default_factory=list)
    merged_entities: List[MergedEntity] = Field(default_factory=list)
    ambiguous_entities: List[AmbiguousEntity] = Field(default_factory=list)
