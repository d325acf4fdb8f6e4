"""Exception hierarchy for docrag.

Only programming-contract violations surface to callers; API and cache
failures are absorbed by the embedding layer and logged instead.
"""
from __future__ import annotations


class DocRagError(Exception):
    """Base class for all docrag errors."""


class DimensionMismatchError(DocRagError, ValueError):
    """Two vectors of different length were compared."""

    def __init__(self, left: int, right: int) -> None:
        self.left = left
        self.right = right
        super().__init__(f"Vector dimensions do not match: {left} vs {right}")


class EmbeddingAPIError(DocRagError):
    """The embeddings endpoint failed or returned something unusable."""


class ContextLengthExceededError(EmbeddingAPIError):
    """At least one input in the batch exceeded the model's context window."""
