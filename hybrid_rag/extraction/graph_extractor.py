"""Entity and relationship extraction for knowledge graph construction.

The extractor asks the language model for entities and then for relationships
between them, using YAML prompt templates and a strict JSON output contract.
Whatever goes wrong with the model, ``extract`` returns a well-formed result:
entity failures fall back to regex heuristics, relationship failures yield no
relationships, and results are memoized per chunk text in bounded caches.
"""

from __future__ import annotations

import json
import re
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import yaml
from loguru import logger

from hybrid_rag.extraction.models import (
    EntityExtractionResult,
    ExtractedEntity,
    ExtractedRelationship,
    coerce_properties,
)
from hybrid_rag.extraction.pattern_extractor import PatternEntityExtractor
from hybrid_rag.utils.cache import BoundedCache, content_hash
from hybrid_rag.utils.config import ExtractionConfig
from hybrid_rag.utils.llm_client import LanguageModel

DEFAULT_PROMPTS_PATH = Path(__file__).with_name("prompts.yaml")

_JSON_OBJECT = re.compile(r"\{.*\}", flags=re.DOTALL)


class ResponseParseError(ValueError):
    """Raised when a model response does not contain the expected JSON object."""


class GraphExtractor:
    """Extracts typed entities and relationships from text chunks."""

    def __init__(
        self,
        language_model: Optional[LanguageModel] = None,
        config: Optional[ExtractionConfig] = None,
        *,
        pattern_extractor: Optional[PatternEntityExtractor] = None,
    ) -> None:
        self.language_model = language_model
        self.config = config or ExtractionConfig()
        self.prompts_path = Path(self.config.prompts_path or DEFAULT_PROMPTS_PATH)
        self.prompts = self._load_prompts(self.prompts_path)
        self.pattern_extractor = pattern_extractor or PatternEntityExtractor(
            confidence=self.config.fallback_confidence
        )

        self._entity_cache: BoundedCache[str, List[ExtractedEntity]] = BoundedCache(
            self.config.cache_capacity
        )
        self._relationship_cache: BoundedCache[str, List[ExtractedRelationship]] = BoundedCache(
            self.config.cache_capacity
        )

        logger.info(
            "Initialized GraphExtractor",
            language_model=type(language_model).__name__ if language_model else None,
            prompts=str(self.prompts_path),
            cache_capacity=self.config.cache_capacity,
        )

    def extract(
        self,
        text: str,
        document_id: str,
        chunk_index: Optional[int] = None,
    ) -> EntityExtractionResult:
        """Extract entities and relationships from one chunk of text.

        Never raises; on an unexpected failure the result is empty with
        confidence 0.
        """
        start_time = time.perf_counter()

        try:
            cache_key = content_hash(text)
            cached_entities = self._entity_cache.get(cache_key)
            if cached_entities is not None:
                cached_relationships = self._relationship_cache.get(cache_key) or []
                logger.debug(
                    "Extraction cache hit",
                    document_id=document_id,
                    chunk_index=chunk_index,
                )
                return EntityExtractionResult(
                    entities=[e.model_copy(deep=True) for e in cached_entities],
                    relationships=[r.model_copy(deep=True) for r in cached_relationships],
                    confidence=self.config.cached_result_confidence,
                    processing_time_ms=self._elapsed_ms(start_time),
                )

            entities = self._extract_entities(text)
            relationships = self._extract_relationships(text, entities)

            self._entity_cache.put(cache_key, entities)
            self._relationship_cache.put(cache_key, relationships)

            result = EntityExtractionResult(
                entities=[e.model_copy(deep=True) for e in entities],
                relationships=[r.model_copy(deep=True) for r in relationships],
                confidence=self._overall_confidence(entities, relationships),
                processing_time_ms=self._elapsed_ms(start_time),
            )
            logger.info(
                "Extracted knowledge from chunk",
                document_id=document_id,
                chunk_index=chunk_index,
                entities=len(result.entities),
                relationships=len(result.relationships),
                elapsed_ms=round(result.processing_time_ms, 1),
            )
            return result
        except Exception as e:
            logger.error(
                "Error in entity extraction",
                error=str(e),
                document_id=document_id,
                chunk_index=chunk_index,
            )
            return EntityExtractionResult(
                confidence=0.0,
                processing_time_ms=self._elapsed_ms(start_time),
            )

    def clear_cache(self) -> None:
        """Drop all memoized extraction results."""
        self._entity_cache.clear()
        self._relationship_cache.clear()
        logger.debug("Cleared extraction cache")

    def get_cache_stats(self) -> Dict[str, Any]:
        entity_stats = self._entity_cache.stats()
        return {
            "entities": entity_stats["size"],
            "relationships": len(self._relationship_cache),
            "hits": entity_stats["hits"],
            "misses": entity_stats["misses"],
            "evictions": entity_stats["evictions"],
            "capacity": self.config.cache_capacity,
        }

    # -----------------------
    # Entities
    # -----------------------
    def _extract_entities(self, text: str) -> List[ExtractedEntity]:
        if self.language_model is None:
            logger.debug("No language model configured, using fallback entity extraction")
            return self.pattern_extractor.extract_entities(text)

        try:
            system, user = self._render_prompt(
                "entity_extraction",
                {"chunk_text": text, "entity_types": ", ".join(self.config.entity_types)},
            )
            response = self.language_model.generate_text(
                [
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ]
            )
            return self._parse_entities_response(response)
        except Exception as e:
            logger.warning(f"Entity extraction failed, using fallback extraction: {e}")
            return self.pattern_extractor.extract_entities(text)

    def _parse_entities_response(self, response_text: str) -> List[ExtractedEntity]:
        data = self._extract_json(response_text)
        if isinstance(data, dict):
            raw_entities = data.get("entities") or []
        elif isinstance(data, list):
            raw_entities = data
        else:
            raise ResponseParseError("Unexpected entity response structure")

        entities: List[ExtractedEntity] = []
        for item in raw_entities:
            if not isinstance(item, dict):
                continue

            entity_text = str(item.get("text") or item.get("name") or "").strip()
            if not entity_text:
                continue

            ent_type = str(item.get("type") or "").strip().upper() or "CONCEPT"
            start = self._coerce_offset(self._first_present(item, "startOffset", "start_offset"))
            if start is None:
                start = 0
            end = self._coerce_offset(self._first_present(item, "endOffset", "end_offset"))
            if end is None or end < start:
                end = start + len(entity_text)

            entities.append(
                ExtractedEntity(
                    text=entity_text,
                    type=ent_type,
                    start_offset=start,
                    end_offset=end,
                    confidence=self._clamp_confidence(item.get("confidence")),
                    properties=coerce_properties(item.get("properties")),
                    aliases=self._normalize_aliases(item.get("aliases")),
                )
            )

        return entities

    # -----------------------
    # Relationships
    # -----------------------
    def _extract_relationships(
        self, text: str, entities: List[ExtractedEntity]
    ) -> List[ExtractedRelationship]:
        if len(entities) < 2 or self.language_model is None:
            return []

        try:
            entities_list = "\n".join(f"- {e.text} ({e.type})" for e in entities)
            system, user = self._render_prompt(
                "relationship_extraction",
                {
                    "chunk_text": text,
                    "entities_list": entities_list,
                    "relationship_types": ", ".join(self.config.relationship_types),
                },
            )
            response = self.language_model.generate_text(
                [
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ]
            )
            return self._parse_relationships_response(response)
        except Exception as e:
            logger.warning(f"Relationship extraction failed: {e}")
            return []

    def _parse_relationships_response(self, response_text: str) -> List[ExtractedRelationship]:
        data = self._extract_json(response_text)
        if isinstance(data, dict):
            raw_relationships = data.get("relationships") or []
        elif isinstance(data, list):
            raw_relationships = data
        else:
            raise ResponseParseError("Unexpected relationship response structure")

        relationships: List[ExtractedRelationship] = []
        for item in raw_relationships:
            if not isinstance(item, dict):
                continue

            source = str(
                item.get("sourceEntity") or item.get("source_entity") or item.get("source") or ""
            ).strip()
            target = str(
                item.get("targetEntity") or item.get("target_entity") or item.get("target") or ""
            ).strip()
            if not source or not target or source == target:
                continue

            rel_type = (
                str(
                    item.get("relationshipType")
                    or item.get("relationship_type")
                    or item.get("type")
                    or ""
                )
                .strip()
                .upper()
                or "RELATES_TO"
            )

            relationships.append(
                ExtractedRelationship(
                    source_entity=source,
                    target_entity=target,
                    relationship_type=rel_type,
                    confidence=self._clamp_confidence(item.get("confidence")),
                    context=str(item.get("context") or ""),
                    properties=coerce_properties(item.get("properties")),
                )
            )

        return relationships

    # -----------------------
    # Prompt handling
    # -----------------------
    def _load_prompts(self, path: Path) -> Dict[str, Any]:
        if not path.exists():
            raise FileNotFoundError(f"Extraction prompt template not found: {path}")
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Prompt template root must be a mapping/dict: {path}")
        return data

    def _render_prompt(self, key: str, context: Dict[str, Any]) -> Tuple[str, str]:
        if key not in self.prompts:
            raise KeyError(f"Prompt key not found in template: {key}")

        prompt = self.prompts.get(key) or {}
        system = str(prompt.get("system", "")).strip()
        user_template = str(prompt.get("user_template", "{chunk_text}"))

        try:
            user = user_template.format(**context)
        except KeyError as exc:
            missing = exc.args[0]
            raise KeyError(f"Missing placeholder '{missing}' in prompt context for '{key}'")
        return system, user

    # -----------------------
    # Parsing helpers
    # -----------------------
    def _extract_json(self, text: str) -> Any:
        if not text:
            raise ResponseParseError("Empty response")

        try:
            return json.loads(text)
        except json.JSONDecodeError:
            pass

        match = _JSON_OBJECT.search(text)
        if not match:
            raise ResponseParseError("No JSON found in response")

        try:
            return json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            raise ResponseParseError(f"Invalid JSON in response: {exc}") from exc

    @staticmethod
    def _first_present(item: Dict[str, Any], *keys: str) -> Any:
        for key in keys:
            if item.get(key) is not None:
                return item[key]
        return None

    @staticmethod
    def _coerce_offset(value: Any) -> Optional[int]:
        if value is None or isinstance(value, bool):
            return None
        try:
            offset = int(value)
        except (TypeError, ValueError):
            return None
        return offset if offset >= 0 else None

    def _normalize_aliases(self, aliases: Any) -> List[str]:
        if aliases is None:
            return []
        if isinstance(aliases, str):
            return [aliases.strip()] if aliases.strip() else []
        if isinstance(aliases, Sequence):
            return [str(a).strip() for a in aliases if str(a).strip()]
        return []

    def _clamp_confidence(self, value: Any) -> float:
        if value is None or isinstance(value, bool):
            return 0.5
        try:
            score = float(value)
        except (TypeError, ValueError):
            return 0.5
        if score != score:  # NaN
            return 0.5
        return max(0.0, min(score, 1.0))

    @staticmethod
    def _overall_confidence(
        entities: List[ExtractedEntity], relationships: List[ExtractedRelationship]
    ) -> float:
        if not entities:
            return 0.0

        entity_confidence = sum(e.confidence for e in entities) / len(entities)
        if relationships:
            relationship_confidence = sum(r.confidence for r in relationships) / len(relationships)
        else:
            relationship_confidence = entity_confidence
        return (entity_confidence + relationship_confidence) / 2

    @staticmethod
    def _elapsed_ms(start_time: float) -> float:
        return (time.perf_counter() - start_time) * 1000
