"""Configuration management using Pydantic for validation."""

from pathlib import Path
from typing import Any, Dict, List, Literal

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMConfig(BaseSettings):
    """LLM configuration."""

    provider: Literal["openai", "anthropic"] = "openai"
    model: str = "gpt-4.1-mini"
    temperature: float = 0.1
    max_tokens: int = 2000
    timeout: int = 60
    retry_attempts: int = 3
    base_url: str | None = None
    api_key: str | None = None

    @field_validator("temperature")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        """Validate temperature is between 0 and 1."""
        if not 0 <= v <= 1:
            raise ValueError("Temperature must be between 0 and 1")
        return v


class ExtractionConfig(BaseSettings):
    """Entity and relationship extraction configuration."""

    enable_llm: bool = True
    prompts_path: str | None = None
    cache_capacity: int = Field(default=1024, ge=1)
    fallback_confidence: float = Field(default=0.6, ge=0.0, le=1.0)
    cached_result_confidence: float = Field(default=0.9, ge=0.0, le=1.0)
    entity_types: List[str] = Field(
        default=[
            "PERSON",
            "ORGANIZATION",
            "LOCATION",
            "DATE",
            "CONCEPT",
            "CITATION",
            "TOPIC",
        ]
    )
    relationship_types: List[str] = Field(
        default=[
            "MENTIONS",
            "RELATES_TO",
            "PART_OF",
            "AUTHORED_BY",
            "LOCATED_IN",
            "OCCURRED_ON",
            "CITES",
            "ASSOCIATED_WITH",
        ]
    )


class NormalizationConfig(BaseSettings):
    """Entity resolution configuration."""

    levenshtein_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    substring_length_tolerance: int = Field(default=3, ge=0)


class GraphConfig(BaseSettings):
    """Knowledge graph construction configuration."""

    provider: Literal["memory", "neo4j"] = "memory"
    context_window: int = Field(default=50, ge=0)
    content_preview_chars: int = Field(default=1000, ge=0)
    max_workers: int = Field(default=4, ge=1)
    annotate_canonical_entities: bool = True


class VectorSearchConfig(BaseSettings):
    """Vector search configuration."""

    provider: Literal["memory", "qdrant"] = "memory"
    collection: str = "document_chunks"
    top_k: int = 10
    min_score: float = 0.0


class GraphSearchConfig(BaseSettings):
    """Graph search configuration."""

    search_type: Literal["entity", "relationship", "path", "pattern"] = "pattern"
    max_depth: int = Field(default=3, ge=1)
    min_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    max_results: int = Field(default=20, ge=1)
    max_terms: int = Field(default=5, ge=1)
    min_term_length: int = Field(default=3, ge=1)
    max_workers: int = Field(default=5, ge=1)


class HybridSearchConfig(BaseSettings):
    """Hybrid search configuration."""

    vector_weight: float = Field(default=0.6, ge=0.0)
    graph_weight: float = Field(default=0.4, ge=0.0)
    parallel_execution: bool = True
    timeout_seconds: float = Field(default=30.0, gt=0.0)
    max_results: int = 10


class RetrievalConfig(BaseSettings):
    """Retrieval configuration."""

    vector_search: VectorSearchConfig = Field(default_factory=VectorSearchConfig)
    graph_search: GraphSearchConfig = Field(default_factory=GraphSearchConfig)
    hybrid: HybridSearchConfig = Field(default_factory=HybridSearchConfig)


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    level: str = "INFO"
    format: Literal["json", "text"] = "text"
    file: str | None = "logs/hybrid_rag.log"
    max_size_mb: int = 100
    backup_count: int = 5


class DatabaseConfig(BaseSettings):
    """Database configuration from environment variables."""

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)

    # Neo4j
    neo4j_uri: str = Field(default="bolt://localhost:7687")
    neo4j_user: str = Field(default="neo4j")
    neo4j_password: str = Field(default="hybridrag")
    neo4j_database: str = Field(default="neo4j")

    # Qdrant
    # If set (e.g. ":memory:"), QdrantClient will use local/in-memory mode and no server is required.
    qdrant_location: str = Field(default="")
    qdrant_host: str = Field(default="localhost")
    qdrant_port: int = Field(default=6333)
    qdrant_api_key: str = Field(default="")
    qdrant_https: bool = Field(default=False)

    # Embedding
    embedding_provider: Literal["local", "openai"] = Field(default="local")
    embedding_model: str = Field(default="BAAI/bge-small-en-v1.5")
    embedding_dimension: int = Field(default=384)
    embedding_batch_size: int = Field(default=32)
    embedding_base_url: str | None = Field(default=None)
    embedding_api_key: str | None = Field(default=None)
    fallback_embedding_dimension: int = Field(default=1024)


class Config(BaseSettings):
    """Main configuration class."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )

    llm: LLMConfig = Field(default_factory=LLMConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    normalization: NormalizationConfig = Field(default_factory=NormalizationConfig)
    graph: GraphConfig = Field(default_factory=GraphConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    @staticmethod
    def _deep_merge_dict(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
        """Deep-merge two dicts (overrides win).

        This is used to apply environment-derived overrides on top of YAML defaults.
        """
        merged: Dict[str, Any] = dict(base)
        for key, value in overrides.items():
            if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
                merged[key] = Config._deep_merge_dict(merged[key], value)
            else:
                merged[key] = value
        return merged

    @classmethod
    def from_yaml(cls, yaml_path: str | Path = "config/config.yaml") -> "Config":
        """Load configuration from YAML file and environment variables.

        Precedence (highest to lowest):
        1) Environment variables / .env
        2) YAML file
        3) Model defaults

        Args:
            yaml_path: Path to YAML configuration file

        Returns:
            Config instance with loaded settings

        Raises:
            FileNotFoundError: If YAML file doesn't exist
            ValueError: If the YAML root is not a mapping
        """
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(yaml_path) as f:
            yaml_config = yaml.safe_load(f) or {}

        if not isinstance(yaml_config, dict):
            raise ValueError(f"YAML config root must be a mapping/dict: {yaml_path}")

        # Nested BaseSettings (like DatabaseConfig) do NOT pick up plain env vars
        # (e.g. NEO4J_PASSWORD) through the parent model, so their overrides are
        # computed separately and merged under "database".
        env_overrides = cls().model_dump(exclude_defaults=True)

        db_env_overrides = DatabaseConfig().model_dump(exclude_defaults=True)
        if db_env_overrides:
            yaml_database = yaml_config.get("database", {})
            env_overrides["database"] = cls._deep_merge_dict(
                yaml_database if isinstance(yaml_database, dict) else {},
                db_env_overrides,
            )

        merged = cls._deep_merge_dict(yaml_config, env_overrides)

        return cls(**merged)

    def validate_config(self) -> None:
        """Validate cross-field configuration settings.

        Raises:
            ValueError: If configuration is invalid
        """
        hybrid = self.retrieval.hybrid
        if hybrid.vector_weight == 0 and hybrid.graph_weight == 0:
            raise ValueError("At least one of vector_weight / graph_weight must be positive")

        if self.llm.provider == "anthropic" and not self.llm.api_key:
            raise ValueError("Anthropic API key required when using anthropic provider")

        if self.graph.provider == "neo4j" and not self.database.neo4j_uri:
            raise ValueError("neo4j_uri is required when graph.provider is 'neo4j'")

        valid_dimensions = {
            "BAAI/bge-small-en-v1.5": 384,
            "BAAI/bge-base-en-v1.5": 768,
            "BAAI/bge-large-en-v1.5": 1024,
        }
        if self.database.embedding_model in valid_dimensions:
            expected_dim = valid_dimensions[self.database.embedding_model]
            if self.database.embedding_dimension != expected_dim:
                raise ValueError(
                    f"Embedding dimension mismatch: {self.database.embedding_model} "
                    f"requires {expected_dim} dimensions, got {self.database.embedding_dimension}"
                )


# Global configuration instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance.

    Returns:
        Global Config instance

    Raises:
        RuntimeError: If configuration hasn't been initialized
    """
    if _config is None:
        raise RuntimeError("Configuration not initialized. Call load_config() first.")
    return _config


def load_config(yaml_path: str | Path = "config/config.yaml") -> Config:
    """Load and validate configuration.

    Args:
        yaml_path: Path to YAML configuration file

    Returns:
        Loaded and validated Config instance
    """
    global _config
    _config = Config.from_yaml(yaml_path)
    _config.validate_config()
    return _config


def reset_config() -> None:
    """Reset global configuration (mainly for testing)."""
    global _config
    _config = None
