"""Vector similarity helpers and the deterministic fallback embedding.

The fallback embedding is used whenever the embedding provider is unavailable
or returns something unusable, so that cosine similarity stays defined
downstream. It is a pure function of the input text.
"""

from __future__ import annotations

import hashlib
from typing import Sequence

import numpy as np
from loguru import logger

FALLBACK_EMBEDDING_DIMENSION = 1024


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Calculate cosine similarity between two vectors.

    Args:
        a: First vector
        b: Second vector

    Returns:
        Cosine similarity in [-1, 1]; 0.0 when either vector has zero magnitude

    Raises:
        ValueError: If the vectors have different lengths
    """
    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)
    if vec_a.shape != vec_b.shape:
        raise ValueError(
            f"Vectors must have the same dimension (got {vec_a.size} and {vec_b.size})"
        )

    norm_a = np.linalg.norm(vec_a)
    norm_b = np.linalg.norm(vec_b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = float(np.dot(vec_a, vec_b) / (norm_a * norm_b))
    return max(-1.0, min(1.0, similarity))


def _stable_hash(text: str) -> int:
    return int.from_bytes(hashlib.md5(text.encode("utf-8")).digest()[:4], "big")


def fallback_embedding(text: str, dimension: int = FALLBACK_EMBEDDING_DIMENSION) -> list[float]:
    """Generate a deterministic unit-length embedding from character statistics.

    Args:
        text: Text to embed; empty or non-string input is replaced by a constant
        dimension: Output vector size

    Returns:
        Unit-length vector of ``dimension`` floats
    """
    if dimension < 1:
        raise ValueError("Embedding dimension must be positive")

    if not isinstance(text, str) or not text.strip():
        logger.debug("Invalid input text for fallback embedding, using default")
        text = "default text"

    embedding = np.zeros(dimension, dtype=np.float64)
    clean_text = text.lower().strip()
    for char in clean_text:
        code = ord(char)
        embedding[code % dimension] += code * 0.1
        embedding[(code * 3) % dimension] += code * 0.05
        embedding[(code * 7) % dimension] += code * 0.02

    # Spread some mass over the whole vector so short texts differ beyond a few slots
    for i in range(0, dimension, 10):
        embedding[i] += (_stable_hash(f"{text}{i}") % 100) * 0.001

    magnitude = np.linalg.norm(embedding)
    if magnitude == 0:
        embedding[0] = 1.0
        return embedding.tolist()
    return (embedding / magnitude).tolist()
