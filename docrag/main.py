"""
docrag - CLI Entry Point
-------------------------
Exposes Typer commands for indexing, querying and cache housekeeping.

Usage:
    python -m docrag.main index docs/                 # Chunk, embed, save snapshot
    python -m docrag.main index src/ --type code      # Split source files by definition
    python -m docrag.main query "how do plugins load?"
    python -m docrag.main learn chat.json             # Extract knowledge from a conversation
    python -m docrag.main cache-stats                 # Embedding cache counters
    python -m docrag.main evict                       # Force cache eviction
"""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from docrag.chunking.sources import DocumentationSource
from docrag.config import Settings, load_settings
from docrag.engine import RetrievalEngine
from docrag.retrieval.similarity import ScoredResult, SimilarityIndex
from docrag.utils.helpers import load_json, truncate_text
from docrag.utils.logger import setup_logger

app = typer.Typer(
    name="docrag",
    help="Documentation retrieval - chunk, embed and search local docs",
    add_completion=False,
)
console = Console()

DEFAULT_INDEX_PATH = "data/index/index.json"


# --- Helpers ------------------------------------------------------------------

def _settings(config: Optional[str]) -> Settings:
    settings = load_settings(config)
    setup_logger(settings.logging.level, settings.logging.file)
    return settings


def _print_results(query: str, results: list[ScoredResult]) -> None:
    if not results:
        console.print(f"[yellow]No results for[/yellow] {query!r}")
        return

    table = Table(
        "No.", "Score", "Source", "Section", "Excerpt",
        box=box.SIMPLE,
        show_header=True,
        header_style="bold dim",
    )
    for i, result in enumerate(results, start=1):
        meta = result.metadata
        table.add_row(
            str(i),
            f"{result.score:.3f}",
            truncate_text(str(meta.get("source", "")), 40),
            truncate_text(str(meta.get("section") or meta.get("title") or ""), 30),
            truncate_text(" ".join(result.content.split()), 80),
        )
    console.print(table)


# --- Commands -----------------------------------------------------------------

@app.command()
def index(
    path: Path = typer.Argument(..., help="File or directory to index"),
    source_type: str = typer.Option("markdown", "--type", "-t", help="markdown | code"),
    name: Optional[str] = typer.Option(None, "--name", help="Source name stored in metadata"),
    index_path: str = typer.Option(DEFAULT_INDEX_PATH, "--index-path", help="Snapshot file"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to config YAML"),
) -> None:
    """
    Chunk and embed a documentation source, then save the index snapshot.

    \b
    Steps:
      1. Find files (recursively) for the source type
      2. Chunk (markdown sections / code definitions / sliding window)
      3. Embed with cache + rate limiting (fallback vectors without an API key)
      4. Write the snapshot JSON
    """
    if source_type not in ("markdown", "code"):
        console.print(f"[red]Unknown source type: {source_type}[/red]")
        raise typer.Exit(1)
    if not path.exists():
        console.print(f"[red]Path not found: {path}[/red]")
        raise typer.Exit(1)

    settings = _settings(config)
    source = DocumentationSource(name=name or path.name, path=path, type=source_type)
    asyncio.run(_index_async(settings, source, index_path))


async def _index_async(settings: Settings, source: DocumentationSource, index_path: str) -> None:
    engine = RetrievalEngine(settings)
    try:
        with console.status(f"[cyan]Indexing {source.path}...[/cyan]"):
            added = await engine.index_source(source)
        engine.index.save(index_path)
    finally:
        await engine.close()

    usage = engine.generator.usage_summary()
    console.print(
        Panel(
            f"[green]{added}[/green] chunks indexed from [bold]{source.name}[/bold]\n"
            f"API calls: {usage['total_api_calls']}  |  tokens: {usage['total_tokens_used']:,}  |  "
            f"fallback: {usage['fallback_embeddings']}  |  cost: ${usage['estimated_cost_usd']:.5f}\n"
            f"Snapshot: {index_path}",
            title="[bold cyan]Index built[/bold cyan]",
            box=box.ROUNDED,
            expand=False,
        )
    )


@app.command()
def query(
    text: str = typer.Argument(..., help="Query text"),
    top_k: Optional[int] = typer.Option(None, "--top-k", "-k", help="Max results"),
    min_score: Optional[float] = typer.Option(None, "--min-score", help="Score threshold"),
    mode: Optional[str] = typer.Option(None, "--mode", help="semantic | keyword | hybrid"),
    index_path: str = typer.Option(DEFAULT_INDEX_PATH, "--index-path", help="Snapshot file"),
    json_out: bool = typer.Option(False, "--json", help="Print results as JSON"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to config YAML"),
) -> None:
    """Search a saved index snapshot."""
    if not Path(index_path).exists():
        console.print(
            f"[red]Index not found: {index_path}[/red]\n"
            "Build one first: [bold]python -m docrag.main index <path>[/bold]"
        )
        raise typer.Exit(1)

    settings = _settings(config)
    results = asyncio.run(_query_async(settings, index_path, text, top_k, min_score, mode))

    if json_out:
        console.print_json(
            data=[{"score": r.score, "content": r.content, "metadata": r.metadata} for r in results],
            default=str,
        )
    else:
        _print_results(text, results)


async def _query_async(
    settings: Settings,
    index_path: str,
    text: str,
    top_k: Optional[int],
    min_score: Optional[float],
    mode: Optional[str],
) -> list[ScoredResult]:
    engine = RetrievalEngine(settings)
    loaded = SimilarityIndex.load(index_path)
    engine.index.records.extend(loaded.records)
    try:
        return await engine.query(text, k=top_k, min_score=min_score, mode=mode)
    finally:
        await engine.close()


@app.command()
def learn(
    conversation_path: Path = typer.Argument(..., help="Conversation JSON file"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to config YAML"),
) -> None:
    """Add the problem/solution pairs found in a conversation to the knowledge base."""
    if not conversation_path.exists():
        console.print(f"[red]Conversation not found: {conversation_path}[/red]")
        raise typer.Exit(1)

    settings = _settings(config)
    added = asyncio.run(_learn_async(settings, load_json(conversation_path)))
    console.print(
        f"[green][OK][/green] {added} knowledge item(s) added -> {settings.knowledge.storage_path}"
    )


async def _learn_async(settings: Settings, conversation: dict) -> int:
    engine = RetrievalEngine(settings)
    try:
        return await engine.learn(conversation)
    finally:
        await engine.close()


@app.command("cache-stats")
def cache_stats(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to config YAML"),
) -> None:
    """Show the embedding cache size and location."""
    settings = _settings(config)
    engine = RetrievalEngine(settings)
    stats = engine.cache.stats()

    table = Table("Metric", "Value", box=box.SIMPLE, header_style="bold dim")
    table.add_row("Directory", str(settings.cache.directory))
    for key, value in stats.items():
        table.add_row(key.replace("_", " ").title(), f"{value:,}")
    console.print(table)


@app.command()
def evict(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to config YAML"),
) -> None:
    """Evict the oldest embedding cache entries if the cache is over its limit."""
    settings = _settings(config)
    engine = RetrievalEngine(settings)
    removed = engine.cache.evict_if_oversize()
    logger.info(f"[CLI] Eviction removed {removed} entries")
    console.print(f"[green][OK][/green] Removed {removed} cache entries")


# --- Entry Point --------------------------------------------------------------

if __name__ == "__main__":
    app()
