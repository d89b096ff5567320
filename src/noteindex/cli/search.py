"""noteindex search / context — ranked and graph-expanded retrieval."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from noteindex.cli.common import DEFAULT_DB, build_registry, console, load_cfg, open_database
from noteindex.search.engine import HybridSearchEngine

_EXCERPT_WIDTH = 80


def search_cmd(
    query: Annotated[str, typer.Argument(help="Free-text query.")],
    limit: Annotated[
        int,
        typer.Option("--limit", "-n", min=1, help="Maximum results to show."),
    ] = 15,
    db: Annotated[Path, typer.Option("--db", help="Path to .noteindex.db.")] = DEFAULT_DB,
) -> None:
    """Search documents (lexical + vector, fused)."""
    cfg = load_cfg(db)
    engine = HybridSearchEngine(open_database(db), build_registry(cfg), cfg.search)
    results = engine.search(query)[:limit]
    if not results:
        console.print("[dim]No matches.[/]")
        return

    table = Table(title=f"Results for '{query}'")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Title", style="bold")
    table.add_column("Excerpt")
    table.add_column("Id", style="dim")
    for i, result in enumerate(results, start=1):
        table.add_row(str(i), result.title, _shorten(result.excerpt), result.document_id)
    console.print(table)


def context_cmd(
    query: Annotated[str, typer.Argument(help="Free-text query.")],
    seeds: Annotated[
        int,
        typer.Option("--seeds", min=1, help="Number of ranked matches to expand from."),
    ] = 5,
    db: Annotated[Path, typer.Option("--db", help="Path to .noteindex.db.")] = DEFAULT_DB,
) -> None:
    """Show the graph-expanded context set for a query."""
    cfg = load_cfg(db)
    engine = HybridSearchEngine(open_database(db), build_registry(cfg), cfg.search)
    items = engine.retrieve_context(query, seed_limit=seeds)
    if not items:
        console.print("[dim]No matches.[/]")
        return

    table = Table(title=f"Context for '{query}'")
    table.add_column("Source", style="cyan")
    table.add_column("Title", style="bold")
    table.add_column("Excerpt")
    table.add_column("Id", style="dim")
    for item in items:
        table.add_row(item.source, item.title, _shorten(item.excerpt), item.document_id)
    console.print(table)


def _shorten(text: str | None) -> str:
    if not text:
        return ""
    flat = " ".join(text.split())
    return flat if len(flat) <= _EXCERPT_WIDTH else flat[: _EXCERPT_WIDTH - 1] + "…"
