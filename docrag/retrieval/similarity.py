"""
Similarity Index
-----------------
Exhaustive linear scan over embedded chunks.  Every record is scored
against the query vector with cosine similarity; results are filtered by a
minimum score, sorted descending (ties keep insertion order) and cut to k.

The index is not safe to mutate while a query is running; callers build it
first and query afterwards.

Persistence: a single JSON snapshot of records (content, metadata,
embedding) written with orjson.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional

import numpy as np
from loguru import logger

from docrag.chunking.schemas import DocumentChunk
from docrag.errors import DimensionMismatchError
from docrag.utils.helpers import load_json, save_json

ZERO_VECTOR_SIMILARITY = 0.5     # score when either vector has zero magnitude
UNEMBEDDED_SCORE = -1.0


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """
    Cosine similarity clamped to [0, 1].

    Raises DimensionMismatchError when the vectors differ in length.
    """
    a = np.asarray(a, dtype=np.float32)
    b = np.asarray(b, dtype=np.float32)
    if a.shape != b.shape:
        raise DimensionMismatchError(a.size, b.size)

    norm_a = float(np.linalg.norm(a))
    norm_b = float(np.linalg.norm(b))
    if norm_a == 0.0 or norm_b == 0.0:
        return ZERO_VECTOR_SIMILARITY

    score = float(np.dot(a, b)) / (norm_a * norm_b)
    return min(1.0, max(0.0, score))


@dataclass
class ScoredResult:
    content: str
    metadata: dict[str, Any]
    score: float


@dataclass
class IndexRecord:
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    embedding: Optional[np.ndarray] = None


class SimilarityIndex:
    """
    In-memory list of (content, metadata, embedding) records.

    Add chunks via add_chunks(), query via query().
    Persist with save(); restore with SimilarityIndex.load().
    """

    def __init__(self, records: Optional[Iterable[IndexRecord]] = None) -> None:
        self.records: list[IndexRecord] = list(records or [])

    # --- Build ----------------------------------------------------------------

    def add_record(
        self, content: str, metadata: Optional[dict] = None, embedding: Optional[np.ndarray] = None
    ) -> None:
        vector = None if embedding is None else np.asarray(embedding, dtype=np.float32)
        self.records.append(IndexRecord(content, dict(metadata or {}), vector))

    def add_chunks(self, chunks: Iterable[DocumentChunk]) -> int:
        added = 0
        for chunk in chunks:
            self.add_record(
                chunk.content, chunk.metadata.model_dump(exclude_none=True), chunk.embedding
            )
            added += 1
        logger.debug(f"[SimilarityIndex] Added {added} chunks | total {len(self.records)}")
        return added

    def clear(self) -> None:
        self.records.clear()

    def __len__(self) -> int:
        return len(self.records)

    @property
    def embedded_count(self) -> int:
        return sum(1 for r in self.records if r.embedding is not None)

    # --- Search ---------------------------------------------------------------

    def query(
        self, query_vector: np.ndarray, k: int = 5, min_score: float = 0.7
    ) -> list[ScoredResult]:
        """
        Rank every record against query_vector.

        Args:
            query_vector: Embedding of the query, same length as the records'.
            k: Maximum number of results (0 returns nothing).
            min_score: Inclusive score threshold in [-1, 1].

        Returns:
            ScoredResults sorted by score descending.
        """
        if k < 0:
            raise ValueError(f"k must be non-negative, got {k}")
        if not -1.0 <= min_score <= 1.0:
            raise ValueError(f"min_score must be within [-1, 1], got {min_score}")

        scored = []
        for record in self.records:
            if record.embedding is None:
                score = UNEMBEDDED_SCORE
            else:
                score = cosine_similarity(query_vector, record.embedding)
            if score >= min_score:
                scored.append(ScoredResult(record.content, dict(record.metadata), score))

        scored.sort(key=lambda r: r.score, reverse=True)
        return scored[:k]

    # --- Persistence ----------------------------------------------------------

    def save(self, path: str | Path) -> None:
        """Write a JSON snapshot of all records."""
        save_json(
            [
                {
                    "content": r.content,
                    "metadata": r.metadata,
                    "embedding": None if r.embedding is None else r.embedding.tolist(),
                }
                for r in self.records
            ],
            path,
        )
        logger.info(f"[SimilarityIndex] {len(self.records)} records saved -> {path}")

    @classmethod
    def load(cls, path: str | Path) -> "SimilarityIndex":
        """Load a snapshot written by save()."""
        instance = cls()
        for raw in load_json(path):
            instance.add_record(raw["content"], raw.get("metadata"), raw.get("embedding"))
        logger.info(
            f"[SimilarityIndex] Loaded {len(instance)} records "
            f"({instance.embedded_count} embedded) from {path}"
        )
        return instance
