"""Tests for the two-tier embedding cache."""

import os

import numpy as np
import pytest

from conftest import FakeClient, FakeEmbeddings, TEST_DIMENSIONS
from docrag.config import EmbeddingConfig
from docrag.embedding.cache import EmbeddingCache
from docrag.embedding.embedder import EmbeddingGenerator
from docrag.embedding.rate_limiter import SlidingWindowRateLimiter
from docrag.utils.helpers import content_hash


def _vec(seed: float) -> np.ndarray:
    return np.array([seed, 1.0, 2.0], dtype=np.float32)


class TestMemoryTier:
    def test_round_trip(self) -> None:
        cache = EmbeddingCache(max_size=10)
        cache.put("hello world", _vec(0.5))

        np.testing.assert_array_equal(cache.get("hello world"), _vec(0.5))
        assert cache.hits == 1

    def test_whitespace_is_normalized(self) -> None:
        cache = EmbeddingCache(max_size=10)
        cache.put("  hello \n\t world ", _vec(1.0))

        assert cache.get("hello world") is not None
        assert cache.get("hello   world") is not None

    def test_miss_returns_none(self) -> None:
        cache = EmbeddingCache(max_size=10)
        assert cache.get("never stored") is None
        assert cache.misses == 1

    def test_returned_vector_is_a_copy(self) -> None:
        cache = EmbeddingCache(max_size=10)
        cache.put("text", _vec(1.0))
        cache.get("text")[0] = 99.0
        assert cache.get("text")[0] == 1.0


class TestDiskTier:
    def test_survives_new_instance(self, cache_dir) -> None:
        EmbeddingCache(max_size=10, cache_dir=cache_dir).put("persist me", _vec(3.0))

        fresh = EmbeddingCache(max_size=10, cache_dir=cache_dir)
        np.testing.assert_array_equal(fresh.get("persist me"), _vec(3.0))
        assert fresh.disk_hits == 1
        assert len(fresh) == 1

    def test_file_layout(self, cache_dir) -> None:
        EmbeddingCache(max_size=10, cache_dir=cache_dir).put("a  b", _vec(1.0))
        path = cache_dir / f"{content_hash('a b')}.json"

        assert path.exists()
        assert b'"text":"a b"' in path.read_bytes()

    def test_corrupt_file_is_a_miss(self, cache_dir) -> None:
        cache_dir.mkdir(parents=True)
        (cache_dir / f"{content_hash('broken')}.json").write_text("{not json", encoding="utf-8")

        assert EmbeddingCache(max_size=10, cache_dir=cache_dir).get("broken") is None

    def test_clear_removes_files(self, cache_dir) -> None:
        cache = EmbeddingCache(max_size=10, cache_dir=cache_dir)
        cache.put("one", _vec(1.0))
        cache.clear()

        assert len(cache) == 0
        assert list(cache_dir.glob("*.json")) == []


class TestUnwritableDirectory:
    @pytest.fixture
    def blocked_dir(self, tmp_path):
        blocker = tmp_path / "not-a-directory"
        blocker.write_text("x", encoding="utf-8")
        return blocker / "cache"

    def test_put_falls_back_to_memory(self, blocked_dir) -> None:
        cache = EmbeddingCache(max_size=10, cache_dir=blocked_dir)
        cache.put("kept in memory", _vec(2.0))

        np.testing.assert_array_equal(cache.get("kept in memory"), _vec(2.0))
        assert not blocked_dir.exists()

    def test_unknown_text_is_a_miss(self, blocked_dir) -> None:
        cache = EmbeddingCache(max_size=10, cache_dir=blocked_dir)
        assert cache.get("never stored") is None
        assert cache.misses == 1

    @pytest.mark.asyncio
    async def test_generator_still_returns_vectors(self, blocked_dir, clock) -> None:
        embeddings = FakeEmbeddings(TEST_DIMENSIONS)
        generator = EmbeddingGenerator(
            EmbeddingConfig(dimensions=TEST_DIMENSIONS),
            cache=EmbeddingCache(max_size=10, cache_dir=blocked_dir),
            rate_limiter=SlidingWindowRateLimiter(60, clock=clock),
            client=FakeClient(embeddings),
        )

        first = await generator.generate_batch(["alpha", "beta"])
        again = await generator.generate_batch(["alpha"])

        assert [v.shape for v in first] == [(TEST_DIMENSIONS,)] * 2
        np.testing.assert_allclose(again[0], first[0])
        assert len(embeddings.calls) == 1


class TestEviction:
    def test_removes_oldest_fraction(self) -> None:
        cache = EmbeddingCache(max_size=10, eviction_interval=1000)
        for i in range(11):
            cache.put(f"text {i}", _vec(float(i)))

        removed = cache.evict_if_oversize()

        # max(11 - 10, int(10 * 0.2)) == 2
        assert removed == 2
        assert cache.get("text 0") is None
        assert cache.get("text 1") is None
        assert cache.get("text 2") is not None

    def test_under_limit_is_untouched(self) -> None:
        cache = EmbeddingCache(max_size=10, eviction_interval=1000)
        for i in range(10):
            cache.put(f"text {i}", _vec(float(i)))
        assert cache.evict_if_oversize() == 0
        assert len(cache) == 10

    def test_runs_every_interval_puts(self) -> None:
        cache = EmbeddingCache(max_size=5, eviction_interval=3)
        for i in range(5):
            cache.put(f"text {i}", _vec(float(i)))
        assert len(cache) == 5

        cache.put("text 5", _vec(5.0))  # sixth put triggers the check
        assert len(cache) == 5
        assert cache.get("text 0") is None

    def test_disk_evicts_by_mtime(self, cache_dir) -> None:
        cache = EmbeddingCache(max_size=5, cache_dir=cache_dir, eviction_interval=1000)
        for i in range(7):
            cache.put(f"text {i}", _vec(float(i)))
            os.utime(cache_dir / f"{content_hash(f'text {i}')}.json", (1000 + i, 1000 + i))

        cache.evict_if_oversize()

        remaining = {p.stem for p in cache_dir.glob("*.json")}
        assert content_hash("text 0") not in remaining
        assert content_hash("text 1") not in remaining
        assert content_hash("text 6") in remaining
        assert len(remaining) == 5

    def test_stats(self, cache_dir) -> None:
        cache = EmbeddingCache(max_size=5, cache_dir=cache_dir)
        cache.put("a", _vec(1.0))
        cache.get("a")
        cache.get("b")

        stats = cache.stats()
        assert stats["memory_entries"] == 1
        assert stats["disk_entries"] == 1
        assert stats["hits"] == 1
        assert stats["misses"] == 1
