"""
Dual-Field Document Store
--------------------------
Document-level store that keeps two embeddings per document, one for the
title and one for the content, so a query can match on either field or on
a weighted blend of both:

    combined score = title_score * w_title + content_score * w_content

Embeddings never leave the store: every document handed back to a caller
(search results, get_document, export_documents, filter_fn) is a deep copy
without vectors.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Literal, Optional

import numpy as np
from loguru import logger
from pydantic import BaseModel, Field

from docrag.config import CombinedWeights
from docrag.embedding.embedder import EmbeddingGenerator
from docrag.retrieval.similarity import cosine_similarity

SearchMode = Literal["title", "content", "combined"]
FilterFn = Callable[["StoreDocument"], bool]


class StoreDocument(BaseModel):
    id: str
    title: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)


@dataclass
class DualFieldRecord:
    document: StoreDocument
    title_embedding: np.ndarray
    content_embedding: np.ndarray
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class ScoredDocument:
    document: StoreDocument
    score: float
    matched_on: SearchMode


@dataclass
class SearchTelemetry:
    latency_ms: float
    match_count: int
    total_documents: int
    query: str


@dataclass
class SearchResults:
    results: list[ScoredDocument]
    telemetry: SearchTelemetry


class DualFieldStore:
    """
    In-memory title/content store keyed by document id.

    Usage:
        store = DualFieldStore(generator)
        await store.add_documents(docs)
        hits = await store.search("how do I configure plugins", mode="title")
    """

    def __init__(
        self,
        generator: Optional[EmbeddingGenerator] = None,
        similarity_threshold: float = 0.7,
        max_results: int = 5,
        combined_weights: Optional[CombinedWeights] = None,
    ) -> None:
        self.generator = generator
        self.similarity_threshold = similarity_threshold
        self.max_results = max_results
        self.combined_weights = combined_weights or CombinedWeights()
        self._records: dict[str, DualFieldRecord] = {}

    @classmethod
    def from_config(cls, config, generator: Optional[EmbeddingGenerator] = None) -> "DualFieldStore":
        return cls(
            generator,
            similarity_threshold=config.similarity_threshold,
            max_results=config.max_results,
            combined_weights=config.combined_weights,
        )

    def _require_generator(self) -> EmbeddingGenerator:
        if self.generator is None:
            raise RuntimeError("DualFieldStore has no EmbeddingGenerator; use add_embedded()")
        return self.generator

    # --- Mutation -------------------------------------------------------------

    async def add_document(self, document: StoreDocument) -> None:
        await self.add_documents([document])

    async def add_documents(self, documents: list[StoreDocument]) -> None:
        """Embed titles and contents in one batch each; overwrite by id."""
        if not documents:
            return
        generator = self._require_generator()
        title_vecs = await generator.generate_batch([d.title for d in documents])
        content_vecs = await generator.generate_batch([d.content for d in documents])
        for document, title_vec, content_vec in zip(documents, title_vecs, content_vecs):
            self.add_embedded(document, title_vec, content_vec)
        logger.info(f"[DualFieldStore] Stored {len(documents)} documents | total {len(self)}")

    def add_embedded(
        self, document: StoreDocument, title_embedding: np.ndarray, content_embedding: np.ndarray
    ) -> None:
        """Store a document with precomputed title/content vectors."""
        self._records[document.id] = DualFieldRecord(
            document=document.model_copy(deep=True),
            title_embedding=np.asarray(title_embedding, dtype=np.float32),
            content_embedding=np.asarray(content_embedding, dtype=np.float32),
        )

    def remove_document(self, document_id: str) -> bool:
        removed = self._records.pop(document_id, None) is not None
        if removed:
            logger.debug(f"[DualFieldStore] Removed {document_id}")
        return removed

    async def load_documents(self, documents: list[StoreDocument]) -> None:
        """Replace the whole document set."""
        self._records.clear()
        await self.add_documents(documents)

    # --- Read -----------------------------------------------------------------

    def get_document(self, document_id: str) -> Optional[StoreDocument]:
        record = self._records.get(document_id)
        return None if record is None else record.document.model_copy(deep=True)

    def export_documents(self) -> list[StoreDocument]:
        return [r.document.model_copy(deep=True) for r in self._records.values()]

    def size(self) -> int:
        return len(self._records)

    def __len__(self) -> int:
        return len(self._records)

    # --- Search ---------------------------------------------------------------

    async def search(
        self,
        query: str,
        mode: SearchMode = "combined",
        top_k: Optional[int] = None,
        filter_fn: Optional[FilterFn] = None,
        combined_weights: Optional[CombinedWeights] = None,
    ) -> SearchResults:
        """Embed the query, then score it against the chosen field(s)."""
        start = time.perf_counter()
        query_vec = await self._require_generator().embed_query(query)
        return self._score(query_vec, mode, top_k, filter_fn, combined_weights, query, start)

    def search_by_embedding(
        self,
        vector: np.ndarray,
        target_field: SearchMode = "content",
        top_k: Optional[int] = None,
        filter_fn: Optional[FilterFn] = None,
        combined_weights: Optional[CombinedWeights] = None,
    ) -> SearchResults:
        """Score a precomputed query vector, skipping query embedding."""
        start = time.perf_counter()
        return self._score(
            np.asarray(vector, dtype=np.float32), target_field, top_k, filter_fn,
            combined_weights, f"[embedding:{target_field}]", start,
        )

    def _score(
        self,
        query_vec: np.ndarray,
        mode: SearchMode,
        top_k: Optional[int],
        filter_fn: Optional[FilterFn],
        combined_weights: Optional[CombinedWeights],
        label: str,
        start: float,
    ) -> SearchResults:
        top_k = self.max_results if top_k is None else top_k
        weights = combined_weights or self.combined_weights

        scored: list[ScoredDocument] = []
        for record in self._records.values():
            document = record.document.model_copy(deep=True)
            if filter_fn is not None and not filter_fn(document):
                continue

            if mode == "title":
                score = cosine_similarity(query_vec, record.title_embedding)
            elif mode == "content":
                score = cosine_similarity(query_vec, record.content_embedding)
            else:
                score = (
                    cosine_similarity(query_vec, record.title_embedding) * weights.title
                    + cosine_similarity(query_vec, record.content_embedding) * weights.content
                )

            if score >= self.similarity_threshold:
                scored.append(ScoredDocument(document, score, mode))

        scored.sort(key=lambda s: s.score, reverse=True)
        results = scored[:top_k]
        latency_ms = (time.perf_counter() - start) * 1000

        logger.debug(
            f"[DualFieldStore] {label[:60]!r} | mode={mode} | "
            f"{len(results)}/{len(self._records)} matched | {latency_ms:.1f}ms"
        )
        return SearchResults(
            results=results,
            telemetry=SearchTelemetry(
                latency_ms=latency_ms,
                match_count=len(results),
                total_documents=len(self._records),
                query=label,
            ),
        )
