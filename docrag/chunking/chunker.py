"""
docrag - Document Chunker
---------------------------
Splits a document into overlapping character windows that are small enough
to embed on their own while keeping enough context to be useful.

Strategies:
  - SEMANTIC -- split markdown into sections at heading lines first, so a
    chunk never straddles two topics.  Sections that are still larger than
    chunk_size fall through to the sliding window below and keep the section
    title in metadata.section.

  - SIMPLE / PARAGRAPH -- a sliding window of chunk_size characters.  The
    window end is nudged to the nearest paragraph break (within +/-100 chars)
    or, failing that, the next sentence end (within +150 chars) so chunks
    rarely cut a sentence in half.  Consecutive windows share `overlap`
    characters.

Documents no longer than chunk_size are always kept whole.
"""
from __future__ import annotations

import re
from pathlib import Path
from typing import Literal, Optional

from loguru import logger

from docrag.chunking.schemas import ChunkMetadata, DocumentChunk, SourceDocument

# ── Constants ─────────────────────────────────────────────────────────────────

CHUNK_SIZE = 2000            # Characters per window
OVERLAP = 500                # Characters shared by consecutive windows
PARAGRAPH_SLACK = 100        # Search radius for a paragraph break
SENTENCE_LOOKAHEAD = 150     # How far past the window end a sentence may run
SENTENCE_LOOKBEHIND = 50

Strategy = Literal["semantic", "paragraph", "simple"]

_HEADING = re.compile(r"^(#{1,6})[ \t]+(.+)$", re.MULTILINE)
_TITLE_HEADING = re.compile(r"^#[ \t]+(.+)$", re.MULTILINE)
_SENTENCE_END = re.compile(r"[.!?](?=\s)")


# ── Text helpers ──────────────────────────────────────────────────────────────

def extract_title(content: str, default: str) -> str:
    """First level-1 markdown heading, else the default."""
    match = _TITLE_HEADING.search(content)
    return match.group(1).strip() if match else default


def extract_sections(markdown: str, leading_title: str = "Document") -> list[tuple[str, str]]:
    """
    Split markdown into (title, content) sections at heading lines.

    A section runs from its heading to the next heading.  Text before the
    first heading becomes a section named leading_title; a document without
    headings is a single "Document" section.
    """
    headings = list(_HEADING.finditer(markdown))
    if not headings:
        return [("Document", markdown)]

    sections: list[tuple[str, str]] = []
    preamble = markdown[: headings[0].start()].strip()
    if preamble:
        sections.append((leading_title, preamble))

    for i, heading in enumerate(headings):
        end = headings[i + 1].start() if i + 1 < len(headings) else len(markdown)
        body = markdown[heading.start(): end].strip()
        if body:
            sections.append((heading.group(2).strip(), body))
    return sections


def find_sentence_boundary(text: str, position: int) -> int:
    """Index just past the first sentence end at or after position, or -1."""
    window_start = max(0, position - SENTENCE_LOOKBEHIND)
    window_end = min(len(text), position + SENTENCE_LOOKAHEAD)
    for match in _SENTENCE_END.finditer(text, window_start, window_end):
        boundary = match.start() + 1
        if boundary >= position:
            return boundary
    return -1


def split_text(text: str, chunk_size: int, overlap: int) -> list[tuple[int, int]]:
    """
    Sliding-window split.  Returns (start, end) spans into text.

    The next window starts `overlap` characters before the previous end, but
    always at least one character after the previous start.
    """
    spans: list[tuple[int, int]] = []
    length = len(text)
    start = 0

    while start < length:
        end = min(start + chunk_size, length)

        if end < length:
            paragraph = text.find("\n\n", max(start + 1, end - PARAGRAPH_SLACK))
            if paragraph != -1 and paragraph < end + PARAGRAPH_SLACK:
                end = paragraph + 2
            else:
                sentence = find_sentence_boundary(text, end)
                if sentence != -1 and sentence < end + SENTENCE_LOOKAHEAD:
                    end = sentence

        spans.append((start, end))
        if end >= length:
            break
        start = max(end - overlap, start + 1)

    return spans


# ── Main Chunker ──────────────────────────────────────────────────────────────

class DocumentChunker:
    """
    Applies one chunking strategy to plain-text documents.

    Usage:
        chunker = DocumentChunker(strategy="semantic", chunk_size=1000, overlap=200)
        chunks = chunker.chunk(SourceDocument(id="guide", content=text))
    """

    def __init__(
        self,
        strategy: Strategy = "semantic",
        chunk_size: int = CHUNK_SIZE,
        overlap: int = OVERLAP,
        max_chunks_per_document: int = 0,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if overlap < 0:
            raise ValueError(f"overlap must be non-negative, got {overlap}")
        self.strategy = strategy
        self.chunk_size = chunk_size
        self.overlap = overlap
        self.max_chunks_per_document = max_chunks_per_document

    @classmethod
    def from_config(cls, config) -> "DocumentChunker":
        return cls(
            strategy=config.strategy,
            chunk_size=config.chunk_size,
            overlap=config.overlap,
            max_chunks_per_document=config.max_chunks_per_document,
        )

    def chunk(self, document: SourceDocument) -> list[DocumentChunk]:
        """
        Chunk one document with the configured strategy.

        Returns:
            DocumentChunks with contiguous chunk_index values and a shared
            total_chunks, after applying max_chunks_per_document.
        """
        source = document.source or document.id
        title = document.title or extract_title(document.content, document.id)

        if not document.content.strip():
            logger.warning(f"[Chunker] {document.id} has no content, skipping")
            return []

        pieces = self._pieces(document.content, title)
        chunks = self.build_chunks(pieces, source, document.id, title)

        logger.debug(
            f"[Chunker] {document.id[:40]} | {len(document.content)} chars | "
            f"{self.strategy} -> {len(chunks)} chunk(s)"
        )
        return chunks

    def chunk_batch(self, documents: list[SourceDocument]) -> list[DocumentChunk]:
        """Chunk several documents. One bad document does not stop the batch."""
        all_chunks: list[DocumentChunk] = []
        for document in documents:
            try:
                all_chunks.extend(self.chunk(document))
            except Exception as exc:
                logger.warning(f"[Chunker] Skipping {getattr(document, 'id', '?')}: {exc}")
        return all_chunks

    def chunk_file(self, path: str | Path, source: Optional[str] = None) -> list[DocumentChunk]:
        """Read and chunk a file.  Unreadable files yield [] and a warning."""
        path = Path(path)
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning(f"[Chunker] Could not read {path}: {exc}")
            return []
        document = SourceDocument(
            id=path.stem,
            content=content,
            title=extract_title(content, path.stem),
            source=source or str(path),
        )
        return self.chunk(document)

    def split_spans(self, text: str, base: int = 0, section: Optional[str] = None) -> list[tuple]:
        """Window spans as (section, content, start, end), trimmed and non-empty."""
        pieces = []
        for start, end in split_text(text, self.chunk_size, self.overlap):
            piece = text[start:end].strip()
            if piece:
                pieces.append((section, piece, base + start, base + end))
        return pieces

    # --- Strategy dispatch ----------------------------------------------------

    def _pieces(self, content: str, title: str) -> list[tuple]:
        if len(content) <= self.chunk_size:
            return [(None, content, 0, len(content))]
        if self.strategy == "semantic":
            return self._semantic(content, title)
        return self.split_spans(content)

    def _semantic(self, content: str, title: str) -> list[tuple]:
        pieces: list[tuple] = []
        cursor = 0
        for section_title, body in extract_sections(content, leading_title=title):
            offset = content.find(body, cursor)
            if offset == -1:
                offset = cursor
            cursor = offset + len(body)
            if len(body) <= self.chunk_size:
                pieces.append((section_title, body, offset, offset + len(body)))
            else:
                pieces.extend(self.split_spans(body, base=offset, section=section_title))
        return pieces

    def build_chunks(
        self, pieces: list[tuple], source: str, document_id: str, title: Optional[str]
    ) -> list[DocumentChunk]:
        """(section, text, start, end) pieces -> chunks, capped and numbered."""
        if self.max_chunks_per_document > 0 and len(pieces) > self.max_chunks_per_document:
            logger.info(
                f"[Chunker] Limiting {len(pieces)} chunks to "
                f"{self.max_chunks_per_document} for {document_id}"
            )
            pieces = pieces[: self.max_chunks_per_document]

        total = len(pieces)
        return [
            DocumentChunk(
                content=text,
                metadata=ChunkMetadata(
                    source=source,
                    document_id=document_id,
                    title=title,
                    section=section,
                    chunk_index=index,
                    total_chunks=total,
                    start_char=start,
                    end_char=end,
                ),
            )
            for index, (section, text, start, end) in enumerate(pieces)
        ]


def document_chunk(document: SourceDocument) -> DocumentChunk:
    """The whole document as a single chunk, for document-level embeddings."""
    return DocumentChunk(
        content=document.content,
        metadata=ChunkMetadata(
            source=document.source or document.id,
            document_id=document.id,
            title=document.title or extract_title(document.content, document.id),
            chunk_index=0,
            total_chunks=1,
            start_char=0,
            end_char=len(document.content),
        ),
    )
