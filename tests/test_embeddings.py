"""Tests for the embeddings module."""

import threading
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from rag_assistant import embeddings
from rag_assistant.config import EmbeddingConfig
from rag_assistant.embeddings import (
    EMBEDDING_DIM,
    EmbeddingCache,
    EmbeddingProvider,
    cosine_similarity,
    fallback_embedding,
    get_embedding_function,
    l2_normalize,
)


@pytest.fixture(autouse=True)
def _clear_model_cache():
    embeddings._embedding_fn_cache.clear()
    yield
    embeddings._embedding_fn_cache.clear()


class TestFallbackEmbedding:
    def test_is_deterministic(self) -> None:
        a = fallback_embedding("same text")
        b = fallback_embedding("same text")
        assert np.array_equal(a, b)

    def test_has_default_dimension(self) -> None:
        assert fallback_embedding("hello").shape == (EMBEDDING_DIM,)

    def test_is_unit_length(self) -> None:
        vec = fallback_embedding("the quick brown fox")
        assert float(np.linalg.norm(vec)) == pytest.approx(1.0, abs=1e-5)

    def test_empty_text_is_zero_vector(self) -> None:
        vec = fallback_embedding("  ... ")
        assert not vec.any()

    def test_case_insensitive(self) -> None:
        assert np.array_equal(fallback_embedding("Hello World"), fallback_embedding("hello world"))

    def test_shared_words_are_similar(self) -> None:
        a = fallback_embedding("The capital of France is Paris.")
        b = fallback_embedding("What is the capital of France?")
        c = fallback_embedding("Bananas grow in tropical climates")
        assert cosine_similarity(a, b) > 0.5
        assert cosine_similarity(a, b) > cosine_similarity(a, c)

    def test_custom_dimension(self) -> None:
        assert fallback_embedding("hello", dimension=64).shape == (64,)

    def test_known_vector_for_single_word(self) -> None:
        vec = fallback_embedding("hello")
        norm = np.sqrt(1.0 + 0.5**2 + 0.25**2)

        assert np.flatnonzero(vec).tolist() == [42, 118, 401]
        assert vec[42] == pytest.approx(1.0 / norm, abs=1e-6)
        assert vec[118] == pytest.approx(0.5 / norm, abs=1e-6)
        assert vec[401] == pytest.approx(0.25 / norm, abs=1e-6)

    def test_known_indices_for_two_words(self) -> None:
        vec = fallback_embedding("Hello, world!")
        assert np.flatnonzero(vec).tolist() == [42, 55, 118, 130, 390, 401]


class TestCosineSimilarity:
    def test_self_similarity_is_one(self) -> None:
        v = np.array([0.3, -1.2, 4.0])
        assert cosine_similarity(v, v) == pytest.approx(1.0)

    def test_orthogonal_is_zero(self) -> None:
        assert cosine_similarity(np.array([1.0, 0.0]), np.array([0.0, 1.0])) == 0.0

    def test_zero_vector_is_zero(self) -> None:
        assert cosine_similarity(np.zeros(3), np.ones(3)) == 0.0

    def test_mismatched_shapes_are_zero(self) -> None:
        assert cosine_similarity(np.ones(3), np.ones(4)) == 0.0


class TestL2Normalize:
    def test_unit_length(self) -> None:
        out = l2_normalize(np.array([3.0, 4.0]))
        assert out.tolist() == pytest.approx([0.6, 0.8])
        assert out.dtype == np.float32

    def test_zero_vector_unchanged(self) -> None:
        assert not l2_normalize(np.zeros(4)).any()


class TestGetEmbeddingFunction:
    @patch("rag_assistant.embeddings.embedding_functions")
    def test_caches_per_model_name(self, mock_ef) -> None:
        first = get_embedding_function("model-a")
        second = get_embedding_function("model-a")
        assert first is second
        mock_ef.SentenceTransformerEmbeddingFunction.assert_called_once_with(
            model_name="model-a"
        )


class TestEmbeddingProvider:
    def test_disabled_model_uses_fallback(self) -> None:
        provider = EmbeddingProvider(EmbeddingConfig(use_model=False))
        assert provider.initialize() is False
        assert provider.uses_model is False
        assert np.array_equal(provider.embed("hello"), fallback_embedding("hello"))

    @patch("rag_assistant.embeddings.get_embedding_function")
    def test_uses_loaded_model(self, mock_get) -> None:
        mock_get.return_value = MagicMock(return_value=[np.full(512, 0.5)])
        provider = EmbeddingProvider()

        assert provider.initialize() is True
        vec = provider.embed("hello")

        assert provider.uses_model is True
        assert vec.shape == (512,)
        assert vec[0] == pytest.approx(0.5)

    @patch("rag_assistant.embeddings.get_embedding_function")
    def test_load_failure_falls_back(self, mock_get) -> None:
        mock_get.side_effect = RuntimeError("no model")
        provider = EmbeddingProvider()

        assert provider.initialize() is False
        assert np.array_equal(provider.embed("hi"), fallback_embedding("hi"))

    @patch("rag_assistant.embeddings.get_embedding_function")
    def test_model_error_falls_back(self, mock_get) -> None:
        mock_get.return_value = MagicMock(side_effect=RuntimeError("boom"))
        provider = EmbeddingProvider()
        provider.initialize()

        assert np.array_equal(provider.embed("hi"), fallback_embedding("hi"))

    @patch("rag_assistant.embeddings.get_embedding_function")
    def test_wrong_dimension_falls_back(self, mock_get) -> None:
        mock_get.return_value = MagicMock(return_value=[np.ones(384)])
        provider = EmbeddingProvider()
        provider.initialize()

        assert provider.embed("hi").shape == (512,)
        assert np.array_equal(provider.embed("hi"), fallback_embedding("hi"))

    @patch("rag_assistant.embeddings.get_embedding_function")
    def test_embed_normalized(self, mock_get) -> None:
        mock_get.return_value = MagicMock(return_value=[np.full(512, 2.0)])
        provider = EmbeddingProvider()
        provider.initialize()

        vec = provider.embed_normalized("hi")
        assert float(np.linalg.norm(vec)) == pytest.approx(1.0, abs=1e-5)


class TestEmbeddingCache:
    def test_put_get_remove(self) -> None:
        cache = EmbeddingCache()
        cache.put("a", np.ones(2))
        assert "a" in cache
        assert len(cache) == 1
        cache.remove("a")
        assert cache.get("a") is None

    def test_remove_missing_is_noop(self) -> None:
        EmbeddingCache().remove("missing")

    def test_get_or_compute_computes_once(self) -> None:
        cache = EmbeddingCache()
        compute = MagicMock(return_value=np.ones(2))
        first = cache.get_or_compute("a", compute)
        second = cache.get_or_compute("a", compute)
        assert first is second
        compute.assert_called_once()

    def test_concurrent_fill_keeps_one_vector(self) -> None:
        cache = EmbeddingCache()
        results: list[np.ndarray] = []
        barrier = threading.Barrier(8)

        def worker() -> None:
            barrier.wait()
            results.append(cache.get_or_compute("k", lambda: np.random.rand(4)))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(cache) == 1
        assert all(r is cache.get("k") for r in results)

    def test_clear(self) -> None:
        cache = EmbeddingCache()
        cache.put("a", np.ones(2))
        cache.clear()
        assert len(cache) == 0

    def test_removal_during_compute_is_not_undone(self) -> None:
        cache = EmbeddingCache()

        def compute() -> np.ndarray:
            cache.remove("a")
            return np.ones(2)

        vec = cache.get_or_compute("a", compute)

        assert np.array_equal(vec, np.ones(2))
        assert "a" not in cache
        # a later lookup fills the entry again
        cache.get_or_compute("a", lambda: np.zeros(2))
        assert "a" in cache
