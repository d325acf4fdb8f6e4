"""Shared utility functions used across docrag."""
from __future__ import annotations

import hashlib
import math
import re
from pathlib import Path
from typing import Any

import orjson

_WHITESPACE_RUN = re.compile(r"\s+")
_SENTENCE_END = re.compile(r"[.!?]")


# --- Text Utilities -----------------------------------------------------------

def normalize_text(text: str) -> str:
    """Collapse whitespace runs to a single space and trim."""
    return _WHITESPACE_RUN.sub(" ", text).strip()


def content_hash(text: str) -> str:
    """SHA-256 of the normalized text, used as the cache key."""
    return hashlib.sha256(normalize_text(text).encode("utf-8")).hexdigest()


def estimate_tokens(text: str, chars_per_token: int = 4) -> int:
    """Cheap token estimate: ceil(len / chars_per_token)."""
    return math.ceil(len(text) / chars_per_token)


def truncate_at_sentence(text: str, char_limit: int, min_ratio: float = 0.8) -> str:
    """
    Cut text to at most char_limit characters.

    Prefers the last sentence end (. ! ?) before the limit when it falls past
    min_ratio of the limit; otherwise hard-cuts at the limit.
    """
    if len(text) <= char_limit:
        return text
    boundary = -1
    for match in _SENTENCE_END.finditer(text, 0, char_limit):
        boundary = match.start()
    if boundary >= 0 and boundary + 1 > char_limit * min_ratio:
        return text[: boundary + 1]
    return text[:char_limit]


def truncate_text(text: str, max_chars: int = 300) -> str:
    """Truncate text for display purposes."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars].rstrip() + "..."


# --- File I/O -----------------------------------------------------------------

def save_json(data: Any, path: str | Path) -> None:
    """Serialise data to JSON using orjson (fast, handles numpy/datetime)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        f.write(
            orjson.dumps(
                data,
                option=orjson.OPT_INDENT_2 | orjson.OPT_NON_STR_KEYS | orjson.OPT_SERIALIZE_NUMPY,
            )
        )


def load_json(path: str | Path) -> Any:
    """Load JSON data from file."""
    with open(Path(path), "rb") as f:
        return orjson.loads(f.read())

