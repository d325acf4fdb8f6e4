"""
docrag - Documentation Sources
--------------------------------
Loads documents from a directory tree and feeds them to the chunker.

Two kinds of source are understood:
  - markdown -- files are chunked with the configured DocumentChunker
  - code     -- files are split at top-level definitions (def / class /
                function / interface / type / const ...) first, so each
                chunk holds one definition; the definition name becomes
                metadata.section.  Oversized blocks use the sliding window.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Optional

from loguru import logger

from docrag.chunking.chunker import DocumentChunker, extract_title
from docrag.chunking.schemas import DocumentChunk, SourceDocument

MARKDOWN_EXTENSIONS = (".md", ".mdx", ".markdown", ".txt")
CODE_EXTENSIONS = (".py", ".ts", ".tsx", ".js", ".jsx")

# A definition starts at column 0, optionally behind export/async/decorators.
_DEFINITION = re.compile(
    r"^(?:export\s+)?(?:default\s+)?(?:async\s+)?"
    r"(?:def|class|function|interface|type|const|let|var|enum)\s+([A-Za-z_$][\w$]*)",
    re.MULTILINE,
)


@dataclass
class DocumentationSource:
    name: str
    path: Path
    type: Literal["markdown", "code"] = "markdown"
    extensions: tuple[str, ...] = field(default=())

    def __post_init__(self) -> None:
        self.path = Path(self.path)
        if not self.extensions:
            self.extensions = MARKDOWN_EXTENSIONS if self.type == "markdown" else CODE_EXTENSIONS


# --- Loading ------------------------------------------------------------------

def find_files(path: str | Path, extensions: tuple[str, ...]) -> list[Path]:
    """All files under path (recursively) whose suffix is in extensions, sorted."""
    root = Path(path)
    if root.is_file():
        return [root] if root.suffix in extensions else []
    return sorted(p for p in root.rglob("*") if p.is_file() and p.suffix in extensions)


def load_document(path: str | Path, source: Optional[str] = None) -> SourceDocument:
    """Read a file into a SourceDocument.  Raises OSError / UnicodeDecodeError."""
    path = Path(path)
    content = path.read_text(encoding="utf-8")
    return SourceDocument(
        id=path.stem,
        content=content,
        title=extract_title(content, path.stem),
        source=source or str(path),
    )


# --- Code splitting -----------------------------------------------------------

def split_code(content: str) -> list[tuple[str, str, int]]:
    """
    Split source code at top-level definitions.

    Returns (name, block, offset) triples.  Text before the first definition
    is named "Code".
    """
    matches = list(_DEFINITION.finditer(content))
    if not matches:
        return [("Code", content.strip(), 0)] if content.strip() else []

    blocks: list[tuple[str, str, int]] = []
    leading = content[: matches[0].start()].strip()
    if leading:
        blocks.append(("Code", leading, 0))

    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(content)
        block = content[match.start(): end].strip()
        if block:
            blocks.append((match.group(1), block, match.start()))
    return blocks


def chunk_code(document: SourceDocument, chunker: DocumentChunker) -> list[DocumentChunk]:
    pieces: list[tuple] = []
    for name, block, offset in split_code(document.content):
        if len(block) <= chunker.chunk_size:
            pieces.append((name, block, offset, offset + len(block)))
        else:
            pieces.extend(chunker.split_spans(block, base=offset, section=name))

    return chunker.build_chunks(
        pieces, document.source or document.id, document.id, document.title
    )


# --- Source -> chunks ---------------------------------------------------------

def chunk_source(source: DocumentationSource, chunker: DocumentChunker) -> list[DocumentChunk]:
    """
    Chunk every file of a documentation source.

    A file that cannot be read or chunked is logged and skipped.
    """
    files = find_files(source.path, source.extensions)
    logger.info(f"[Sources] {source.name}: {len(files)} {source.type} file(s) under {source.path}")

    chunks: list[DocumentChunk] = []
    for path in files:
        try:
            document = load_document(path, source=source.name)
            if source.type == "code":
                chunks.extend(chunk_code(document, chunker))
            else:
                chunks.extend(chunker.chunk(document))
        except (OSError, UnicodeDecodeError, ValueError) as exc:
            logger.warning(f"[Sources] Skipping {path}: {exc}")

    logger.info(f"[Sources] {source.name}: {len(chunks)} chunks")
    return chunks
