"""
Retriever
----------
Embeds the user query and runs it against the SimilarityIndex.

Modes:
  semantic  cosine similarity only (default)
  keyword   exact term counts, normalised to the best match
  hybrid    exact term count * 2 + semantic score picks the candidates,
            which are then re-ranked by semantic score alone

When nothing clears the configured min_score the query is retried once at
a relaxed threshold, so a sparse index still returns its best weak matches
instead of nothing.  A min_score passed by the caller is always honoured.

The retriever is stateless per query -- call retrieve() as many times
as you like from the same instance.
"""
from __future__ import annotations

import re
from typing import Literal, Optional

import numpy as np
from langsmith import traceable
from loguru import logger

from docrag.embedding.embedder import EmbeddingGenerator
from docrag.retrieval.similarity import ScoredResult, SimilarityIndex, cosine_similarity

RetrievalMode = Literal["semantic", "keyword", "hybrid"]

EXACT_MATCH_WEIGHT = 2
RERANK_DEPTH = 10
_TERM_SPLIT = re.compile(r"\W+")


def key_terms(query: str, min_length: int = 3) -> list[str]:
    """Lower-cased query words of at least min_length characters."""
    return [w for w in _TERM_SPLIT.split(query.lower()) if len(w) >= min_length]


def count_term_matches(terms: list[str], content: str) -> int:
    """Total case-insensitive occurrences of every term in content."""
    lowered = content.lower()
    return sum(len(re.findall(re.escape(term), lowered)) for term in terms)


class Retriever:
    """Wraps SimilarityIndex.query() with automatic query embedding."""

    def __init__(
        self,
        index: SimilarityIndex,
        generator: EmbeddingGenerator,
        top_k: int = 5,
        min_score: float = 0.7,
        relaxed_min_score: Optional[float] = 0.3,
        mode: RetrievalMode = "semantic",
    ) -> None:
        self.index = index
        self.generator = generator
        self.top_k = top_k
        self.min_score = min_score
        self.relaxed_min_score = relaxed_min_score
        self.mode = mode

    @traceable(name="retrieve", run_type="retriever")
    async def retrieve(
        self,
        query: str,
        k: Optional[int] = None,
        min_score: Optional[float] = None,
        mode: Optional[RetrievalMode] = None,
    ) -> list[ScoredResult]:
        """
        Return up to k results for the query.

        Args:
            query: Raw user query string.
            k: Result count (defaults to self.top_k).
            min_score: Threshold (defaults to self.min_score, which may be
                relaxed when nothing passes; an explicit value never is).
            mode: "semantic", "keyword" or "hybrid" (defaults to self.mode).

        Returns:
            ScoredResults sorted by score descending.
        """
        k = self.top_k if k is None else k
        mode = mode or self.mode
        logger.debug(f"[Retriever] Query ({mode}): {query[:80]!r}")

        if mode == "keyword":
            results = self.keyword_matches(query, k)
        elif mode == "hybrid":
            results = await self.hybrid(query, k)
        elif mode == "semantic":
            results = await self._semantic(query, k, min_score)
        else:
            raise ValueError(f"Unknown retrieval mode: {mode!r}")

        logger.info(
            f"[Retriever] Retrieved {len(results)} results "
            f"(top score: {results[0].score:.4f})" if results else "[Retriever] No results"
        )
        return results

    async def _semantic(
        self, query: str, k: int, min_score: Optional[float]
    ) -> list[ScoredResult]:
        threshold = self.min_score if min_score is None else min_score
        query_vec: np.ndarray = await self.generator.embed_query(query)
        results = self.index.query(query_vec, k=k, min_score=threshold)

        relaxed = self.relaxed_min_score
        if not results and min_score is None and relaxed is not None and threshold > relaxed:
            logger.info(
                f"[Retriever] No results at {threshold:.2f}, retrying at {relaxed:.2f}"
            )
            results = self.index.query(query_vec, k=k, min_score=relaxed)
        return results

    # --- Keyword / hybrid ---------------------------------------------------

    def keyword_matches(self, query: str, k: int) -> list[ScoredResult]:
        """
        Records containing query terms longer than three characters, ranked
        by how often the terms occur.  Scores are divided by the best count,
        so the top match scores 1.0.
        """
        terms = key_terms(query, min_length=4)
        if not terms or k <= 0:
            return []

        counted = []
        for record in self.index.records:
            count = count_term_matches(terms, record.content)
            if count > 0:
                counted.append((record, count))
        if not counted:
            return []

        best = max(count for _, count in counted)
        results = [
            ScoredResult(record.content, dict(record.metadata), count / best)
            for record, count in counted
        ]
        results.sort(key=lambda r: r.score, reverse=True)
        return results[:k]

    async def hybrid(self, query: str, k: int) -> list[ScoredResult]:
        """
        Score = exact term count * 2 + semantic similarity.  The top
        RERANK_DEPTH candidates are re-ranked by semantic similarity and the
        returned scores are those similarities.
        """
        if k <= 0 or not self.index.records:
            return []

        terms = key_terms(query, min_length=3)
        query_vec: np.ndarray = await self.generator.embed_query(query)

        candidates = []
        for record in self.index.records:
            if record.embedding is None:
                continue
            semantic = cosine_similarity(query_vec, record.embedding)
            exact = count_term_matches(terms, record.content)
            combined = exact * EXACT_MATCH_WEIGHT + semantic
            if combined > 0:
                candidates.append((combined, semantic, record))

        candidates.sort(key=lambda c: c[0], reverse=True)
        reranked = [
            ScoredResult(record.content, dict(record.metadata), semantic)
            for _, semantic, record in candidates[:RERANK_DEPTH]
        ]
        reranked.sort(key=lambda r: r.score, reverse=True)
        logger.debug(
            f"[Retriever] Hybrid: {len(candidates)} candidates, re-ranked top {len(reranked)}"
        )
        return reranked[:k]
