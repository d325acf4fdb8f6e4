"""
Shared test fixtures for the docrag suite.

Provides: manual clock, in-process fake embeddings client, generator factory
System role: keeps every test off the network and off the wall clock
"""
from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Callable, Optional

import numpy as np
import pytest

from docrag.config import EmbeddingConfig
from docrag.embedding.cache import EmbeddingCache
from docrag.embedding.embedder import EmbeddingGenerator
from docrag.embedding.fallback import fallback_embedding
from docrag.embedding.rate_limiter import SlidingWindowRateLimiter

TEST_DIMENSIONS = 16


class FakeClock:
    """Virtual time: sleep() advances now() instantly."""

    def __init__(self, start: float = 1000.0) -> None:
        self.current = start
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.current

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.current += max(0.0, seconds)
        await asyncio.sleep(0)

    def advance(self, seconds: float) -> None:
        self.current += seconds


class FakeEmbeddings:
    """Stands in for AsyncOpenAI().embeddings."""

    def __init__(
        self,
        dimensions: int,
        vector_fn: Optional[Callable[[str], list[float]]] = None,
        errors: Optional[list[Exception]] = None,
    ) -> None:
        self.dimensions = dimensions
        self.vector_fn = vector_fn or (lambda text: fallback_embedding(text, dimensions).tolist())
        self.errors = list(errors or [])
        self.calls: list[list[str]] = []

    async def create(self, model: str, input: list[str], dimensions: Optional[int] = None):
        self.calls.append(list(input))
        if self.errors:
            raise self.errors.pop(0)
        data = [
            SimpleNamespace(embedding=self.vector_fn(text), index=i)
            for i, text in enumerate(input)
        ]
        # Shuffle order to make sure callers sort by index.
        data.reverse()
        return SimpleNamespace(
            data=data, usage=SimpleNamespace(total_tokens=sum(len(t) // 4 for t in input))
        )

    @property
    def items_sent(self) -> int:
        return sum(len(call) for call in self.calls)


class FakeClient:
    def __init__(self, embeddings: FakeEmbeddings) -> None:
        self.embeddings = embeddings
        self.closed = False

    async def close(self) -> None:
        self.closed = True


class ContextLengthError(Exception):
    code = "context_length_exceeded"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_embeddings() -> FakeEmbeddings:
    return FakeEmbeddings(TEST_DIMENSIONS)


@pytest.fixture
def cache_dir(tmp_path):
    return tmp_path / "embedding-cache"


@pytest.fixture
def make_generator(clock, cache_dir):
    """Factory: EmbeddingGenerator wired to a fake client, temp disk cache and manual clock."""

    def _make(
        embeddings: Optional[FakeEmbeddings] = None,
        with_client: bool = True,
        dimensions: int = TEST_DIMENSIONS,
        **config_overrides,
    ) -> EmbeddingGenerator:
        config = EmbeddingConfig(dimensions=dimensions, **config_overrides)
        client = FakeClient(embeddings or FakeEmbeddings(dimensions)) if with_client else None
        return EmbeddingGenerator(
            config,
            cache=EmbeddingCache(max_size=100, cache_dir=cache_dir),
            rate_limiter=SlidingWindowRateLimiter(60, clock=clock),
            client=client,
        )

    return _make


def unit(values) -> np.ndarray:
    vector = np.asarray(values, dtype=np.float32)
    return vector / np.linalg.norm(vector)
