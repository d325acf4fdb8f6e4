"""
Deterministic fallback embedding.

Used when the embedding API is unavailable.  Each distinct lower-cased word
lights up a hashed position plus a decaying tail on its three neighbours, so
texts sharing vocabulary land close together under cosine similarity.  It is
a keyword-overlap signal, not a semantic one.
"""
from __future__ import annotations

import hashlib
import re

import numpy as np

_NON_WORD = re.compile(r"\W+")
NEIGHBOURS = 3


def _position(token: str, dimensions: int) -> int:
    digest = hashlib.sha256(token.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") % dimensions


def tokenize(text: str) -> list[str]:
    """Lower-cased word tokens, first occurrence order, no duplicates."""
    tokens = (t for t in _NON_WORD.split(text.lower()) if t)
    return list(dict.fromkeys(tokens))


def fallback_embedding(text: str, dimensions: int = 1536) -> np.ndarray:
    """
    Hash-based bag-of-words vector of length dimensions.

    Unit length unless the text has no word tokens, in which case the zero
    vector is returned.
    """
    vector = np.zeros(dimensions, dtype=np.float32)
    for token in tokenize(text):
        position = _position(token, dimensions)
        vector[position] = 1.0
        for i in range(1, NEIGHBOURS + 1):
            vector[(position + i) % dimensions] += 0.5 / i

    magnitude = float(np.linalg.norm(vector))
    if magnitude > 0:
        vector /= magnitude
    return vector
