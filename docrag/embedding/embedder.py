"""
OpenAI Embedding Generator with caching and graceful degradation
------------------------------------------------------------------
Wraps the OpenAI embeddings API with:
  - Two-tier cache lookup before any network call
  - Token-aware batching (item count and estimated token budget)
  - Sliding-window rate limiting, one acquisition per API call
  - A single halve-and-retry on context-length errors (tenacity)
  - Deterministic fallback vectors when the API is unavailable
  - LangSmith run tracing and token usage accounting

generate_batch() never raises for API trouble: a failed batch degrades to
fallback vectors (logged, not cached) and the rest of the call proceeds.
"""
from __future__ import annotations

import time
from typing import Any, Optional

import numpy as np
from langsmith import traceable
from loguru import logger
from openai import AsyncOpenAI
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from docrag.config import EmbeddingConfig
from docrag.embedding.cache import EmbeddingCache
from docrag.embedding.fallback import fallback_embedding
from docrag.embedding.rate_limiter import SlidingWindowRateLimiter
from docrag.errors import ContextLengthExceededError, EmbeddingAPIError
from docrag.retrieval.similarity import cosine_similarity
from docrag.utils.helpers import estimate_tokens, normalize_text, truncate_at_sentence

# text-embedding-3-small: $0.020 per million tokens
COST_PER_MILLION_TOKENS = 0.020


def is_context_length_error(exc: BaseException) -> bool:
    if getattr(exc, "code", None) == "context_length_exceeded":
        return True
    return "maximum context length" in str(exc).lower()


def halve(text: str) -> str:
    """Cut text to about half its length, at a sentence end when one is close."""
    return truncate_at_sentence(text, max(1, len(text) // 2))


class EmbeddingGenerator:
    """
    Turns texts into fixed-length float32 vectors, in input order.

    Usage:
        generator = EmbeddingGenerator(EmbeddingConfig(api_key="sk-..."), cache=cache)
        vectors = await generator.generate_batch(["first text", "second text"])
    """

    def __init__(
        self,
        config: Optional[EmbeddingConfig] = None,
        cache: Optional[EmbeddingCache] = None,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        client: Any = None,
    ) -> None:
        self.config = config or EmbeddingConfig()
        self.cache = cache or EmbeddingCache()
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter()

        if client is None and self.config.api_key:
            client = AsyncOpenAI(
                api_key=self.config.api_key,
                base_url=self.config.base_url,
                timeout=self.config.timeout_seconds,
                max_retries=self.config.client_max_retries,
            )
        self._client = client
        if self._client is None:
            logger.warning("[Embedder] No API key configured, using fallback embeddings only")

        self.total_tokens_used: int = 0
        self.total_api_calls: int = 0
        self.failed_batches: int = 0
        self.fallback_count: int = 0

    @property
    def dimensions(self) -> int:
        return self.config.dimensions

    @property
    def model(self) -> str:
        return self.config.model

    # --- Public API -----------------------------------------------------------

    @traceable(name="generate_batch", run_type="embedding")
    async def generate_batch(self, texts: list[str]) -> list[np.ndarray]:
        """
        Embed texts and return one vector per input, in the same order.

        Cached texts cost nothing; identical texts are embedded once.
        """
        results: list[Optional[np.ndarray]] = [None] * len(texts)
        missing: dict[str, list[int]] = {}

        for i, raw in enumerate(texts):
            text = normalize_text(raw)
            if not text:
                results[i] = fallback_embedding("", self.dimensions)
                continue
            cached = self.cache.get(text)
            if cached is not None:
                results[i] = cached
            else:
                missing.setdefault(text, []).append(i)

        if not missing:
            return results  # type: ignore[return-value]

        logger.debug(
            f"[Embedder] {len(texts)} texts | {len(texts) - sum(map(len, missing.values()))} "
            f"resolved locally | {len(missing)} to embed"
        )

        if self._client is None:
            for text, indices in missing.items():
                self._scatter(fallback_embedding(text, self.dimensions), indices, results)
            self.fallback_count += len(missing)
            return results  # type: ignore[return-value]

        prepared = [(text, self._prepare(text)) for text in missing]
        for batch_number, batch in enumerate(self._pack(prepared), start=1):
            keys = [key for key, _ in batch]
            payloads = [payload for _, payload in batch]
            try:
                sent, vectors = await self._embed_with_retry(payloads)
            except EmbeddingAPIError as exc:
                self.failed_batches += 1
                self.fallback_count += len(keys)
                logger.warning(
                    f"[Embedder] Batch {batch_number} ({len(keys)} texts) failed, "
                    f"using fallback embeddings: {exc}"
                )
                for key in keys:
                    self._scatter(fallback_embedding(key, self.dimensions), missing[key], results)
                continue

            for key, payload, sent_text, vector in zip(keys, payloads, sent, vectors):
                self.cache.put(key if sent_text == payload else sent_text, vector)
                self._scatter(vector, missing[key], results)

        return results  # type: ignore[return-value]

    async def embed_query(self, text: str) -> np.ndarray:
        """Embed a single query string. Returns shape (dimensions,) float32 array."""
        return (await self.generate_batch([text]))[0]

    async def text_similarity(self, a: str, b: str) -> float:
        """Cosine similarity of two texts' embeddings."""
        first, second = await self.generate_batch([a, b])
        return cosine_similarity(first, second)

    def usage_summary(self) -> dict:
        return {
            "model": self.model,
            "total_api_calls": self.total_api_calls,
            "total_tokens_used": self.total_tokens_used,
            "failed_batches": self.failed_batches,
            "fallback_embeddings": self.fallback_count,
            "estimated_cost_usd": round(
                self.total_tokens_used / 1_000_000 * COST_PER_MILLION_TOKENS, 6
            ),
            "cache": self.cache.stats(),
        }

    async def close(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            await self._client.close()

    # --- Batching -------------------------------------------------------------

    def _prepare(self, text: str) -> str:
        tokens = estimate_tokens(text, self.config.chars_per_token)
        if tokens <= self.config.max_tokens_per_text:
            return text
        limit = self.config.max_tokens_per_text * self.config.chars_per_token
        truncated = truncate_at_sentence(text, limit)
        logger.warning(
            f"[Embedder] Text of ~{tokens} tokens exceeds {self.config.max_tokens_per_text}, "
            f"truncated to {len(truncated)} chars"
        )
        return truncated

    def _pack(self, prepared: list[tuple[str, str]]) -> list[list[tuple[str, str]]]:
        batches: list[list[tuple[str, str]]] = []
        current: list[tuple[str, str]] = []
        current_tokens = 0
        budget = self.config.max_batch_tokens

        for key, payload in prepared:
            tokens = estimate_tokens(payload, self.config.chars_per_token)
            if current and (
                len(current) >= self.config.max_batch_items or current_tokens + tokens > budget
            ):
                batches.append(current)
                current, current_tokens = [], 0
            current.append((key, payload))
            current_tokens += tokens

        if current:
            batches.append(current)
        return batches

    @staticmethod
    def _scatter(vector: np.ndarray, indices: list[int], results: list) -> None:
        for i in indices:
            results[i] = vector.copy()

    # --- API calls ------------------------------------------------------------

    async def _embed_with_retry(self, texts: list[str]) -> tuple[list[str], list[np.ndarray]]:
        """Returns the texts actually embedded (halved on retry) and their vectors."""
        inputs = list(texts)
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(2),
            retry=retry_if_exception_type(ContextLengthExceededError),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    inputs = [halve(t) for t in inputs]
                    logger.warning(
                        f"[Embedder] Context length exceeded, retrying {len(inputs)} halved texts"
                    )
                vectors = await self._call_api(inputs)
        return inputs, vectors

    async def _call_api(self, texts: list[str]) -> list[np.ndarray]:
        """One rate-limited embeddings request.  Raises EmbeddingAPIError."""
        await self.rate_limiter.acquire()

        request: dict[str, Any] = {"model": self.model, "input": texts}
        if self.config.send_dimensions:
            request["dimensions"] = self.dimensions

        start = time.perf_counter()
        try:
            response = await self._client.embeddings.create(**request)
        except Exception as exc:
            if is_context_length_error(exc):
                raise ContextLengthExceededError(str(exc)) from exc
            raise EmbeddingAPIError(f"{type(exc).__name__}: {exc}") from exc
        elapsed = time.perf_counter() - start
        self.total_api_calls += 1

        vectors = self._parse(response, len(texts))
        usage = getattr(response, "usage", None)
        tokens_used = getattr(usage, "total_tokens", 0) or 0
        self.total_tokens_used += tokens_used

        logger.debug(
            f"[Embedder] API call: {len(texts)} texts, {tokens_used} tokens, {elapsed:.2f}s | "
            f"Running total: {self.total_tokens_used} tokens"
        )
        return vectors

    def _parse(self, response: Any, expected: int) -> list[np.ndarray]:
        try:
            data = sorted(response.data, key=lambda x: x.index)
            vectors = [np.asarray(item.embedding, dtype=np.float32) for item in data]
        except (AttributeError, TypeError, ValueError) as exc:
            raise EmbeddingAPIError(f"Malformed embeddings response: {exc}") from exc

        if len(vectors) != expected:
            raise EmbeddingAPIError(
                f"Malformed embeddings response: {len(vectors)} vectors for {expected} inputs"
            )
        for vector in vectors:
            if vector.shape != (self.dimensions,):
                raise EmbeddingAPIError(
                    f"Malformed embeddings response: vector shape {vector.shape}, "
                    f"expected ({self.dimensions},)"
                )
        return vectors
