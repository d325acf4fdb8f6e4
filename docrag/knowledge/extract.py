"""
Knowledge extraction
---------------------
Turns support conversations into {problem, solution} knowledge items.

An assistant message containing a trigger keyword ("fixed", "workaround",
...) is a solution candidate.  The user messages among the preceding
context_window messages become the problem.  Documentation links found in
the solution are kept on the item.

Conversation shape (a mapping):
    {"id": "...", "messages": [{"role": "user", "text": "..."}, ...]}
A message may carry its role as {"sender": {"role": ...}} instead.
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from loguru import logger

from docrag.knowledge.dedup import KnowledgeItem

DEFAULT_TRIGGERS = [
    "solution", "fixed", "resolved", "answer", "workaround", "problem", "issue", "error",
]
DEFAULT_CONTEXT_WINDOW = 3
BASE_CONFIDENCE = 0.8

_URL = re.compile(
    r"https?://(?:www\.)?[-a-zA-Z0-9@:%._+~#=]{1,256}\.[a-zA-Z0-9()]{1,6}\b"
    r"[-a-zA-Z0-9()@:%_+.~#?&/=]*",
    re.IGNORECASE,
)
_DOC_MARKERS = ("docs", "documentation", "wiki", "readme", "guide")


def extract_doc_links(text: str) -> list[str]:
    """URLs in text that look like documentation links."""
    if not text:
        return []
    return [url for url in _URL.findall(text) if any(m in url.lower() for m in _DOC_MARKERS)]


def _role(message: dict) -> Optional[str]:
    role = message.get("role")
    if role is None and isinstance(message.get("sender"), dict):
        role = message["sender"].get("role")
    return role


def extract_knowledge(
    conversation: Any,
    triggers: Optional[Iterable[str]] = None,
    context_window: int = DEFAULT_CONTEXT_WINDOW,
) -> list[KnowledgeItem]:
    """
    Knowledge items found in one conversation.

    A conversation without a "messages" list is logged and yields nothing.
    Messages without string text are ignored.
    """
    if not isinstance(conversation, dict) or not isinstance(conversation.get("messages"), list):
        logger.warning("[Extract] Invalid conversation format, skipping")
        return []

    keywords = [t.lower() for t in (triggers or DEFAULT_TRIGGERS)]
    messages = [
        m for m in conversation["messages"]
        if isinstance(m, dict) and isinstance(m.get("text"), str)
    ]
    if len(messages) < 2:
        return []

    items: list[KnowledgeItem] = []
    for i, message in enumerate(messages):
        if _role(message) != "assistant":
            continue
        text = message["text"]
        lowered = text.lower()
        if not any(keyword in lowered for keyword in keywords):
            continue

        context = messages[max(0, i - context_window): i]
        problem = "\n\n".join(m["text"] for m in context if _role(m) == "user")
        if not problem:
            continue

        items.append(
            KnowledgeItem(
                problem=problem,
                solution=text,
                doc_links=extract_doc_links(text),
                conversation=conversation.get("id"),
                confidence=BASE_CONFIDENCE,
                timestamp=datetime.now(timezone.utc).isoformat(),
            )
        )

    logger.debug(
        f"[Extract] {len(items)} item(s) from conversation {conversation.get('id')!r} "
        f"({len(messages)} messages)"
    )
    return items
