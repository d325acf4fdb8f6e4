"""
Chunk schema - the atomic unit that gets embedded and indexed.

A DocumentChunk traces back to its parent document (source + document_id)
so every retrieval result carries provenance for citations.
"""
from __future__ import annotations

from typing import Optional

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class SourceDocument(BaseModel):
    """A plain-text document handed to the chunker."""

    id: str
    content: str
    title: Optional[str] = None
    source: Optional[str] = None          # file path, URL, or source name


class ChunkMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str
    document_id: str
    title: Optional[str] = None
    section: Optional[str] = None
    chunk_index: int = Field(ge=0)
    total_chunks: int = Field(gt=0)
    start_char: Optional[int] = None      # window span in the parent content
    end_char: Optional[int] = None

    @model_validator(mode="after")
    def _index_in_range(self) -> "ChunkMetadata":
        if self.chunk_index >= self.total_chunks:
            raise ValueError(
                f"chunk_index {self.chunk_index} out of range for {self.total_chunks} chunks"
            )
        return self


class DocumentChunk(BaseModel):
    """
    A bounded slice of a document, embeddable on its own.

    Chunks are frozen; attaching an embedding produces a new chunk holding a
    read-only float32 copy of the vector.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    content: str
    metadata: ChunkMetadata
    embedding: Optional[np.ndarray] = None

    @field_validator("content")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("chunk content must not be empty")
        return value

    def with_embedding(self, vector: np.ndarray) -> "DocumentChunk":
        if self.embedding is not None:
            raise ValueError(
                f"chunk {self.metadata.document_id}#{self.metadata.chunk_index} is already embedded"
            )
        frozen = np.array(vector, dtype=np.float32, copy=True)
        frozen.flags.writeable = False
        return self.model_copy(update={"embedding": frozen})
