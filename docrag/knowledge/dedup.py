"""
Knowledge deduplication.

A new {problem, solution} item is a duplicate of an existing one only when
BOTH its problem and its solution are more similar than the threshold.
A comparison that fails is logged and counted as "not a duplicate", so a
flaky embedding call never silently drops new knowledge.
"""
from __future__ import annotations

from typing import Any, Iterable, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, ValidationError

from docrag.embedding.embedder import EmbeddingGenerator

DUPLICATE_THRESHOLD = 0.85


class KnowledgeItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    problem: str
    solution: str
    category: Optional[str] = None


def coerce_item(raw: Any) -> KnowledgeItem:
    """Accept a KnowledgeItem or a mapping; raises ValidationError/TypeError."""
    if isinstance(raw, KnowledgeItem):
        return raw
    if not isinstance(raw, dict):
        raise TypeError(f"expected a mapping, got {type(raw).__name__}")
    return KnowledgeItem.model_validate(raw)


class Deduplicator:
    def __init__(self, generator: EmbeddingGenerator, threshold: float = DUPLICATE_THRESHOLD) -> None:
        self.generator = generator
        self.threshold = threshold

    async def is_duplicate(self, item: KnowledgeItem, existing: Iterable[KnowledgeItem]) -> bool:
        for candidate in existing:
            try:
                problem_sim = await self.generator.text_similarity(item.problem, candidate.problem)
                solution_sim = await self.generator.text_similarity(item.solution, candidate.solution)
            except Exception as exc:
                logger.warning(f"[Dedup] Comparison failed, treating as distinct: {exc}")
                continue
            if problem_sim > self.threshold and solution_sim > self.threshold:
                logger.debug(
                    f"[Dedup] Duplicate: {item.problem[:60]!r} "
                    f"(problem={problem_sim:.3f}, solution={solution_sim:.3f})"
                )
                return True
        return False

    async def filter_new(self, items: Iterable[Any], existing: Iterable[KnowledgeItem]) -> list[KnowledgeItem]:
        """
        Items that duplicate neither the existing set nor an item accepted
        earlier in the same call.  Malformed items are skipped with a warning.
        """
        seen = list(existing)
        accepted: list[KnowledgeItem] = []
        for raw in items:
            try:
                item = coerce_item(raw)
            except (ValidationError, TypeError) as exc:
                logger.warning(f"[Dedup] Skipping malformed knowledge item: {exc}")
                continue
            if await self.is_duplicate(item, seen):
                continue
            accepted.append(item)
            seen.append(item)

        logger.info(f"[Dedup] {len(accepted)} new item(s) accepted")
        return accepted
