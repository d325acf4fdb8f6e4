"""
Knowledge base persistence
---------------------------
Problem/solution items live in <storage_path>/knowledge.json, with one
<category>.json file per category alongside it for easier browsing.

New items pass through the Deduplicator before they are written and are
assigned a category by keyword match when they arrive without one.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Optional

import orjson
from loguru import logger
from pydantic import ValidationError

from docrag.knowledge.dedup import Deduplicator, KnowledgeItem
from docrag.knowledge.extract import DEFAULT_CONTEXT_WINDOW, extract_knowledge
from docrag.utils.helpers import load_json, save_json

KNOWLEDGE_FILE = "knowledge.json"
DEFAULT_CATEGORY = "general"

_ERROR_KEYWORDS = ["error", "exception", "fail", "issue", "bug", "problem"]
_GUIDE_KEYWORDS = ["how to", "guide", "tutorial", "walkthrough", "step by step"]


def category_keywords(category: str) -> list[str]:
    name = category.lower()
    if name in ("error", "errors", "issue", "issues"):
        return _ERROR_KEYWORDS
    if name in ("guide", "guides", "tutorial", "tutorials"):
        return _GUIDE_KEYWORDS
    return [name]


def assign_category(text: str, categories: list[str]) -> str:
    """
    Category whose keywords appear most often in text.

    No categories -> "general"; one category -> that one; no keyword
    matches -> the first category.  Ties go to the earlier category.
    """
    if not categories:
        return DEFAULT_CATEGORY
    if len(categories) == 1:
        return categories[0]

    lowered = text.lower()
    best, best_count = categories[0], 0
    for category in categories:
        count = sum(1 for kw in category_keywords(category) if kw in lowered)
        if count > best_count:
            best, best_count = category, count
    return best


class KnowledgeStore:
    def __init__(
        self,
        storage_path: str | Path,
        deduplicator: Deduplicator,
        categories: Optional[list[str]] = None,
        keyword_triggers: Optional[list[str]] = None,
        context_window: int = DEFAULT_CONTEXT_WINDOW,
    ) -> None:
        self.storage_path = Path(storage_path)
        self.deduplicator = deduplicator
        self.categories = list(categories or [])
        self.keyword_triggers = keyword_triggers
        self.context_window = context_window

    @property
    def knowledge_file(self) -> Path:
        return self.storage_path / KNOWLEDGE_FILE

    def load(self) -> list[KnowledgeItem]:
        """Stored items; a missing or unreadable file is an empty knowledge base."""
        if not self.knowledge_file.exists():
            return []
        try:
            raw = load_json(self.knowledge_file)
        except (OSError, orjson.JSONDecodeError) as exc:
            logger.warning(f"[KnowledgeStore] Could not read {self.knowledge_file}: {exc}")
            return []
        if not isinstance(raw, list):
            logger.warning(f"[KnowledgeStore] {self.knowledge_file} is not a list, ignoring")
            return []

        items = []
        for entry in raw:
            try:
                items.append(KnowledgeItem.model_validate(entry))
            except ValidationError as exc:
                logger.warning(f"[KnowledgeStore] Skipping malformed stored item: {exc}")
        return items

    async def add(self, items: Iterable[Any]) -> int:
        """Dedup, categorise and persist new items.  Returns how many were added."""
        existing = self.load()
        new_items = await self.deduplicator.filter_new(items, existing)
        if not new_items:
            return 0

        for item in new_items:
            if item.category is None and self.categories:
                item.category = assign_category(f"{item.problem}\n{item.solution}", self.categories)

        everything = existing + new_items
        self._write(everything)
        logger.info(
            f"[KnowledgeStore] Added {len(new_items)} item(s) | total {len(everything)} "
            f"-> {self.knowledge_file}"
        )
        return len(new_items)

    def _write(self, items: list[KnowledgeItem]) -> None:
        records = [item.model_dump(exclude_none=True) for item in items]
        save_json(records, self.knowledge_file)

        by_category: dict[str, list[dict]] = {}
        for item, record in zip(items, records):
            by_category.setdefault(item.category or DEFAULT_CATEGORY, []).append(record)
        for category, group in by_category.items():
            save_json(group, self.storage_path / f"{category}.json")

    async def add_conversation(self, conversation: Any) -> int:
        """Extract knowledge from a conversation and add it.  Returns how many were added."""
        items = extract_knowledge(conversation, self.keyword_triggers, self.context_window)
        if not items:
            return 0
        return await self.add(items)
