"""Tests for the deterministic fallback embedding."""

import numpy as np
import pytest

from docrag.embedding.fallback import fallback_embedding, tokenize
from docrag.retrieval.similarity import cosine_similarity


class TestFallbackEmbedding:
    def test_deterministic(self) -> None:
        a = fallback_embedding("The quick brown fox")
        b = fallback_embedding("The quick brown fox")
        np.testing.assert_array_equal(a, b)

    def test_default_shape_and_unit_norm(self) -> None:
        vector = fallback_embedding("hello world")
        assert vector.shape == (1536,)
        assert vector.dtype == np.float32
        assert np.linalg.norm(vector) == pytest.approx(1.0, abs=1e-5)

    def test_custom_dimensions(self) -> None:
        assert fallback_embedding("hello", dimensions=32).shape == (32,)

    def test_no_tokens_gives_zero_vector(self) -> None:
        vector = fallback_embedding("  ... !!! ")
        assert not vector.any()

    def test_case_and_repeats_do_not_matter(self) -> None:
        np.testing.assert_allclose(
            fallback_embedding("Hello hello HELLO"), fallback_embedding("hello")
        )

    def test_shared_vocabulary_scores_higher(self) -> None:
        query = fallback_embedding("what color is the sky")
        related = fallback_embedding("the sky is blue")
        unrelated = fallback_embedding("bananas are yellow")
        assert cosine_similarity(query, related) > cosine_similarity(query, unrelated)


class TestTokenize:
    def test_splits_on_non_word_and_dedupes(self) -> None:
        assert tokenize("Sky, sky! blue-sky") == ["sky", "blue"]

    def test_empty(self) -> None:
        assert tokenize("") == []
