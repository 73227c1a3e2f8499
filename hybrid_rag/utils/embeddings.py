"""Embedding generation using FastEmbed or an OpenAI-compatible endpoint.

Every public method degrades to the deterministic fallback embedding instead of
raising, so vector search always has a usable query vector.
"""

import hashlib
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

import numpy as np
from fastembed import TextEmbedding
from loguru import logger

from hybrid_rag.utils.config import DatabaseConfig
from hybrid_rag.utils.llm_client import create_openai_client
from hybrid_rag.utils.similarity import fallback_embedding


@runtime_checkable
class Embedder(Protocol):
    """Anything that maps text to a dense vector."""

    def embed(self, text: str) -> List[float]: ...


class EmbeddingGenerator:
    """Generate embeddings for text with caching and a deterministic fallback.

    Example:
        >>> generator = EmbeddingGenerator(config)
        >>> vector = generator.embed("knowledge graphs")
    """

    def __init__(
        self,
        config: Optional[DatabaseConfig] = None,
        cache_dir: Optional[Path] = None,
        use_cache: bool = True,
    ) -> None:
        """Initialize the embedding generator.

        Args:
            config: Database configuration with embedding settings
            cache_dir: Directory for FastEmbed model files (optional)
            use_cache: Whether to cache embeddings in memory
        """
        self.config = config or DatabaseConfig()
        self.provider = self.config.embedding_provider
        self.use_cache = use_cache

        self._cache: Dict[str, np.ndarray] = {}
        self._cache_hits = 0
        self._cache_misses = 0
        self._fallback_count = 0

        self.model: Any = None
        self.client: Any = None

        try:
            if self.provider == "openai":
                self.client = create_openai_client(
                    api_key=self.config.embedding_api_key,
                    base_url=self.config.embedding_base_url,
                )
                logger.info(f"Using OpenAI embeddings: {self.config.embedding_model}")
            else:
                logger.info(f"Loading embedding model: {self.config.embedding_model}")
                self.model = TextEmbedding(
                    model_name=self.config.embedding_model,
                    cache_dir=str(cache_dir) if cache_dir else None,
                )
                logger.success(
                    f"Loaded {self.config.embedding_model} "
                    f"({self.config.embedding_dimension}d embeddings)"
                )
        except Exception as e:
            logger.error(f"Error loading embedding model, using fallback embeddings: {e}")
            self.model = None
            self.client = None

        self.max_seq_length = 8191 if self.provider == "openai" else 512

    @property
    def available(self) -> bool:
        """Whether a real embedding backend was initialized."""
        return self.model is not None or self.client is not None

    def generate(self, texts: List[str], batch_size: Optional[int] = None) -> List[np.ndarray]:
        """Generate embeddings for a list of texts.

        Texts that cannot be embedded by the provider get the fallback embedding,
        so the result always has one vector per input text.

        Args:
            texts: List of texts to embed
            batch_size: Batch size for processing (uses config default if None)

        Returns:
            List of embedding vectors (numpy arrays)
        """
        if not texts:
            return []

        batch_size = batch_size or self.config.embedding_batch_size

        embeddings: List[Optional[np.ndarray]] = []
        texts_to_embed: List[Tuple[int, str]] = []

        for i, text in enumerate(texts):
            if self.use_cache:
                cache_key = self._get_cache_key(text)
                if cache_key in self._cache:
                    embeddings.append(self._cache[cache_key])
                    self._cache_hits += 1
                    continue

            embeddings.append(None)
            texts_to_embed.append((i, text))
            self._cache_misses += 1

        if texts_to_embed:
            truncated_texts = [self._truncate_text(text) for _, text in texts_to_embed]
            generated = self._embed_batch(truncated_texts, batch_size)

            for (i, original_text), embedding in zip(texts_to_embed, generated):
                if embedding is None:
                    # Fallback vectors stay out of the cache
                    embeddings[i] = np.array(self._fallback(original_text), dtype=np.float32)
                    continue
                embedding_array = np.array(embedding, dtype=np.float32)
                if self.use_cache:
                    self._cache[self._get_cache_key(original_text)] = embedding_array
                embeddings[i] = embedding_array

        result = [e for e in embeddings if e is not None]

        logger.debug(
            f"Generated {len(result)} embeddings "
            f"(cache hits: {self._cache_hits}, misses: {self._cache_misses})"
        )
        return result

    def embed(self, text: str) -> List[float]:
        """Embed a single text as a plain list of floats."""
        embeddings = self.generate([text])
        if not embeddings:
            return self._fallback(text)
        return embeddings[0].tolist()

    def _embed_batch(self, texts: List[str], batch_size: int) -> List[Optional[List[float]]]:
        """Provider vectors for ``texts``; ``None`` marks a text that needs the fallback."""
        try:
            if self.client is not None:
                response = self.client.embeddings.create(
                    model=self.config.embedding_model,
                    input=texts,
                )
                vectors = [list(item.embedding) for item in response.data]
            elif self.model is not None:
                vectors = [list(v) for v in self.model.embed(texts, batch_size=batch_size)]
            else:
                return [None] * len(texts)
        except Exception as e:
            logger.warning(f"Embedding provider failed, using fallback embeddings: {e}")
            return [None] * len(texts)

        if len(vectors) != len(texts):
            logger.warning(
                f"Embedding provider returned {len(vectors)} vectors for {len(texts)} texts"
            )
            return [None] * len(texts)

        return [vector if vector and np.all(np.isfinite(vector)) else None for vector in vectors]

    def _fallback(self, text: str) -> List[float]:
        self._fallback_count += 1
        return fallback_embedding(text, self.get_embedding_dimension())

    def _truncate_text(self, text: str, max_tokens: Optional[int] = None) -> str:
        """Truncate text to fit the model's maximum sequence length."""
        max_tokens = max_tokens or self.max_seq_length

        # Simple approximation: ~4 characters per token
        max_chars = max_tokens * 4

        if len(text) <= max_chars:
            return text

        truncated = text[:max_chars].rsplit(" ", 1)[0]
        logger.debug(f"Truncated text from {len(text)} to {len(truncated)} chars")

        return truncated + "..."

    def _get_cache_key(self, text: str) -> str:
        return hashlib.md5(text.encode()).hexdigest()

    def clear_cache(self) -> None:
        """Clear the embedding cache."""
        self._cache.clear()
        self._cache_hits = 0
        self._cache_misses = 0
        logger.debug("Cleared embedding cache")

    def get_cache_stats(self) -> Dict[str, Any]:
        """Get cache statistics.

        Returns:
            Dictionary with cache statistics
        """
        total_requests = self._cache_hits + self._cache_misses
        hit_rate = self._cache_hits / total_requests if total_requests > 0 else 0

        return {
            "cache_size": len(self._cache),
            "cache_hits": self._cache_hits,
            "cache_misses": self._cache_misses,
            "hit_rate": hit_rate,
            "total_requests": total_requests,
            "fallback_embeddings": self._fallback_count,
        }

    def get_embedding_dimension(self) -> int:
        """Dimension of provider embeddings, or of the fallback when no provider loaded."""
        if not self.available:
            return self.config.fallback_embedding_dimension
        return self.config.embedding_dimension

    def __repr__(self) -> str:
        return (
            f"EmbeddingGenerator(provider={self.provider}, model={self.config.embedding_model}, "
            f"dimension={self.get_embedding_dimension()}, cache_size={len(self._cache)})"
        )
