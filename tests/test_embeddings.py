"""Tests for EmbeddingGenerator provider selection, caching and fallback."""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from hybrid_rag.utils.config import DatabaseConfig
from hybrid_rag.utils.embeddings import Embedder, EmbeddingGenerator
from hybrid_rag.utils.similarity import fallback_embedding


def _openai_response(vectors):
    return SimpleNamespace(data=[SimpleNamespace(embedding=v) for v in vectors])


@pytest.fixture
def openai_config() -> DatabaseConfig:
    return DatabaseConfig(
        embedding_provider="openai",
        embedding_model="text-embedding-3-small",
        embedding_dimension=3,
        embedding_api_key="sk-test",
        embedding_base_url="https://embeddings.example",
    )


@pytest.fixture
def local_config() -> DatabaseConfig:
    return DatabaseConfig(
        embedding_provider="local",
        embedding_model="BAAI/bge-small-en-v1.5",
        embedding_dimension=384,
    )


def test_openai_initialization(openai_config):
    with patch("hybrid_rag.utils.embeddings.create_openai_client") as mock_create:
        generator = EmbeddingGenerator(openai_config)

    mock_create.assert_called_once_with(api_key="sk-test", base_url="https://embeddings.example")
    assert generator.available is True
    assert generator.max_seq_length == 8191
    assert isinstance(generator, Embedder)


def test_openai_generate(openai_config):
    client = MagicMock()
    client.embeddings.create.return_value = _openai_response([[0.1, 0.2, 0.3], [0.4, 0.5, 0.6]])
    with patch("hybrid_rag.utils.embeddings.create_openai_client", return_value=client):
        generator = EmbeddingGenerator(openai_config)

    embeddings = generator.generate(["first", "second"])

    assert len(embeddings) == 2
    assert embeddings[0].dtype == np.float32
    np.testing.assert_allclose(embeddings[1], [0.4, 0.5, 0.6], rtol=1e-6)
    kwargs = client.embeddings.create.call_args.kwargs
    assert kwargs["model"] == "text-embedding-3-small"
    assert kwargs["input"] == ["first", "second"]


def test_local_initialization(local_config):
    with patch("hybrid_rag.utils.embeddings.TextEmbedding") as mock_model:
        mock_model.return_value.embed.return_value = iter([np.ones(384)])
        generator = EmbeddingGenerator(local_config)

        vector = generator.embed("hello")

    mock_model.assert_called_once_with(model_name="BAAI/bge-small-en-v1.5", cache_dir=None)
    assert len(vector) == 384
    assert generator.max_seq_length == 512
    assert generator.get_embedding_dimension() == 384


def test_model_load_failure_uses_fallback(local_config):
    with patch("hybrid_rag.utils.embeddings.TextEmbedding", side_effect=OSError("no model files")):
        generator = EmbeddingGenerator(local_config)

    vector = generator.embed("satellite telemetry")

    assert generator.available is False
    assert generator.get_embedding_dimension() == 1024
    assert vector == pytest.approx(fallback_embedding("satellite telemetry", 1024))
    assert generator.get_cache_stats()["fallback_embeddings"] == 1


def test_provider_error_uses_fallback(openai_config):
    client = MagicMock()
    client.embeddings.create.side_effect = ConnectionError("endpoint down")
    with patch("hybrid_rag.utils.embeddings.create_openai_client", return_value=client):
        generator = EmbeddingGenerator(openai_config)

    embeddings = generator.generate(["a", "b"])

    assert [len(e) for e in embeddings] == [3, 3]
    assert generator.get_cache_stats()["fallback_embeddings"] == 2


def test_count_mismatch_uses_fallback(openai_config):
    client = MagicMock()
    client.embeddings.create.return_value = _openai_response([[0.1, 0.2, 0.3]])
    with patch("hybrid_rag.utils.embeddings.create_openai_client", return_value=client):
        generator = EmbeddingGenerator(openai_config)

    embeddings = generator.generate(["a", "b"])

    assert len(embeddings) == 2
    assert all(len(e) == 3 for e in embeddings)
    assert generator.get_cache_stats()["fallback_embeddings"] == 2


def test_non_finite_vector_replaced(openai_config):
    client = MagicMock()
    client.embeddings.create.return_value = _openai_response([[0.1, float("nan"), 0.3], [0.1, 0.2, 0.3]])
    with patch("hybrid_rag.utils.embeddings.create_openai_client", return_value=client):
        generator = EmbeddingGenerator(openai_config)

    embeddings = generator.generate(["bad", "good"])

    np.testing.assert_allclose(embeddings[0], fallback_embedding("bad", 3), rtol=1e-6)
    np.testing.assert_allclose(embeddings[1], [0.1, 0.2, 0.3], rtol=1e-6)


def test_cache_hits(openai_config):
    client = MagicMock()
    client.embeddings.create.return_value = _openai_response([[0.1, 0.2, 0.3]])
    with patch("hybrid_rag.utils.embeddings.create_openai_client", return_value=client):
        generator = EmbeddingGenerator(openai_config)

    generator.generate(["repeat"])
    generator.generate(["repeat"])

    stats = generator.get_cache_stats()
    assert client.embeddings.create.call_count == 1
    assert stats["cache_hits"] == 1
    assert stats["cache_misses"] == 1
    assert stats["hit_rate"] == 0.5

    generator.clear_cache()
    assert generator.get_cache_stats()["cache_size"] == 0


def test_empty_input_returns_empty(openai_config):
    with patch("hybrid_rag.utils.embeddings.create_openai_client"):
        generator = EmbeddingGenerator(openai_config)

    assert generator.generate([]) == []


def test_long_text_truncated(local_config):
    with patch("hybrid_rag.utils.embeddings.TextEmbedding"):
        generator = EmbeddingGenerator(local_config)

    truncated = generator._truncate_text("word " * 1000)

    assert truncated.endswith("...")
    assert len(truncated) <= 512 * 4 + 3


def test_fallback_after_load_matches_provider_dimension_and_is_not_cached():
    config = DatabaseConfig(embedding_provider="openai", embedding_dimension=384)
    client = MagicMock()
    client.embeddings.create.side_effect = TimeoutError("provider timed out")
    with patch("hybrid_rag.utils.embeddings.create_openai_client", return_value=client):
        generator = EmbeddingGenerator(config)

    vector = generator.embed("hello")

    assert len(vector) == generator.get_embedding_dimension() == 384
    assert generator.get_cache_stats()["cache_size"] == 0

    client.embeddings.create.side_effect = None
    client.embeddings.create.return_value = _openai_response([[0.5] * 384])

    recovered = generator.embed("hello")

    assert recovered == pytest.approx([0.5] * 384)
    assert generator.get_cache_stats()["cache_size"] == 1
