"""
Retrieval Engine
-----------------
Owns every piece of mutable state the retrieval stack needs (embedding
cache, disk cache path, rate-limit window, similarity index, maintenance
schedule) and wires the components together.  Nothing is module-global:
two engines never share a cache or a rate window, which is what lets tests
build isolated ones.

    engine = RetrievalEngine(load_settings())
    await engine.index_documents(docs)
    results = await engine.query("how do I register a plugin?")
"""
from __future__ import annotations

from typing import Any, Iterable, Optional

from langsmith import traceable
from loguru import logger

from docrag.chunking.chunker import DocumentChunker
from docrag.chunking.schemas import DocumentChunk, SourceDocument
from docrag.chunking.sources import DocumentationSource, chunk_source
from docrag.config import Settings
from docrag.embedding.cache import EmbeddingCache
from docrag.embedding.embedder import EmbeddingGenerator
from docrag.embedding.rate_limiter import SlidingWindowRateLimiter
from docrag.knowledge.dedup import Deduplicator
from docrag.knowledge.store import KnowledgeStore
from docrag.retrieval.retriever import RetrievalMode, Retriever
from docrag.retrieval.similarity import ScoredResult, SimilarityIndex
from docrag.retrieval.store import DualFieldStore
from docrag.scheduler import MaintenanceScheduler
from docrag.utils.clock import Clock, SystemClock


class RetrievalEngine:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        client: Any = None,
    ) -> None:
        self.settings = settings or Settings()
        self.clock: Clock = clock or SystemClock()

        self.chunker = DocumentChunker.from_config(self.settings.chunking)
        self.cache = EmbeddingCache.from_config(self.settings.cache)
        self.rate_limiter = SlidingWindowRateLimiter.from_config(
            self.settings.rate_limit, clock=self.clock
        )
        self.generator = EmbeddingGenerator(
            self.settings.embedding, cache=self.cache, rate_limiter=self.rate_limiter, client=client
        )
        self.index = SimilarityIndex()
        self.retriever = Retriever(
            self.index,
            self.generator,
            top_k=self.settings.retrieval.top_k,
            min_score=self.settings.retrieval.min_score,
            relaxed_min_score=self.settings.retrieval.relaxed_min_score,
            mode=self.settings.retrieval.mode,
        )
        self.store = DualFieldStore.from_config(self.settings.store, self.generator)
        self.deduplicator = Deduplicator(
            self.generator, threshold=self.settings.knowledge.duplicate_threshold
        )
        self.knowledge = KnowledgeStore(
            self.settings.knowledge.storage_path,
            self.deduplicator,
            categories=self.settings.knowledge.categories,
            keyword_triggers=self.settings.knowledge.keyword_triggers,
            context_window=self.settings.knowledge.context_window,
        )

        self.scheduler = MaintenanceScheduler(self.clock)
        self.scheduler.add_task(
            "cache-eviction", self.cache.evict_if_oversize, self.settings.cache.maintenance_seconds
        )

    # --- Indexing -------------------------------------------------------------

    async def embed_chunks(self, chunks: list[DocumentChunk]) -> list[DocumentChunk]:
        """Return copies of chunks with embeddings attached."""
        vectors = await self.generator.generate_batch([c.content for c in chunks])
        return [chunk.with_embedding(vector) for chunk, vector in zip(chunks, vectors)]

    @traceable(name="index_documents", run_type="chain")
    async def index_documents(self, documents: Iterable[SourceDocument]) -> int:
        """Chunk, embed and index documents.  Returns the number of chunks added."""
        chunks = self.chunker.chunk_batch(list(documents))
        return await self._index_chunks(chunks)

    async def index_source(self, source: DocumentationSource) -> int:
        return await self._index_chunks(chunk_source(source, self.chunker))

    async def _index_chunks(self, chunks: list[DocumentChunk]) -> int:
        if not chunks:
            logger.warning("[Engine] Nothing to index")
            return 0
        embedded = await self.embed_chunks(chunks)
        added = self.index.add_chunks(embedded)
        logger.info(f"[Engine] Indexed {added} chunks | index size {len(self.index)}")
        return added

    # --- Query ----------------------------------------------------------------

    async def query(
        self,
        text: str,
        k: Optional[int] = None,
        min_score: Optional[float] = None,
        mode: Optional[RetrievalMode] = None,
    ) -> list[ScoredResult]:
        return await self.retriever.retrieve(text, k=k, min_score=min_score, mode=mode)

    # --- Knowledge ------------------------------------------------------------

    async def learn(self, conversation: Any) -> int:
        """Store the problem/solution pairs found in a conversation."""
        return await self.knowledge.add_conversation(conversation)

    # --- Lifecycle ------------------------------------------------------------

    def start_maintenance(self) -> None:
        self.scheduler.start()

    async def close(self) -> None:
        await self.scheduler.stop()
        self.cache.evict_if_oversize()
        await self.generator.close()
        logger.info(f"[Engine] Closed | usage: {self.generator.usage_summary()}")
