"""noteindex status — index health and capability overview.

Shows document and chunk counts per layer, vector row counts and an orphan
check for each vec table, the last cluster run, and which search tier the
current capabilities allow.
"""

from __future__ import annotations

from contextlib import closing
from pathlib import Path
from typing import Annotated

import typer
from rich.panel import Panel
from rich.table import Table

from noteindex.cli.common import DEFAULT_DB, build_registry, console, load_cfg, open_database
from noteindex.cli.errors import err_no_api_key, warn_no_vector_index
from noteindex.cluster.scheduler import LAST_RUN_KEY
from noteindex.db.models import LAYER_CLUSTER, LAYER_RAW, LAYER_SUMMARY
from noteindex.db.paired_store import PairedStore
from noteindex.db.repository import Repository
from noteindex.db.vectors import (
    CHUNKS_KIND,
    CLUSTERS_KIND,
    model_to_slug,
    vec_table_exists,
    vec_table_name,
)


def status_cmd(
    db: Annotated[Path, typer.Option("--db", help="Path to .noteindex.db.")] = DEFAULT_DB,
) -> None:
    """Show index status: documents, chunks per layer, consistency, capabilities."""
    cfg = load_cfg(db)
    database = open_database(db)
    registry = build_registry(cfg)
    slug = model_to_slug(cfg.embedding.model)

    with closing(database.connect()) as conn:
        repo = Repository(conn)
        store = PairedStore(repo)
        vector_loaded = database.is_vector_index_loaded()

        size_mb = db.stat().st_size / (1024 * 1024)
        lines = [
            f"Database:   {db} ({size_mb:.1f} MB)",
            f"Documents:  [bold]{repo.count_documents()}[/]  |  "
            f"Dirty: [bold]{repo.count_dirty()}[/]",
            f"Chunks:     L1 [bold]{repo.count_chunks(LAYER_RAW):,}[/]  |  "
            f"L2 [bold]{repo.count_chunks(LAYER_SUMMARY):,}[/]  |  "
            f"L3 [bold]{repo.count_chunks(LAYER_CLUSTER):,}[/]",
            f"Last cluster run: [dim]{repo.get_setting(LAST_RUN_KEY) or 'never'}[/]",
        ]
        console.print(Panel("\n".join(lines), title="[bold]Index[/]", expand=False))

        table = Table(show_header=True, box=None, padding=(0, 1))
        table.add_column("Vec table")
        table.add_column("Rows", justify="right")
        table.add_column("Consistency")
        if vector_loaded:
            for kind, layers in (
                (CHUNKS_KIND, (LAYER_RAW, LAYER_SUMMARY)),
                (CLUSTERS_KIND, (LAYER_CLUSTER,)),
            ):
                table_name = vec_table_name(slug, kind)
                if not vec_table_exists(conn, table_name):
                    table.add_row(table_name, "-", "[dim]not created[/]")
                    continue
                report = store.find_orphans(table_name, layers)
                verdict = (
                    "[green]✓ consistent[/]"
                    if report.clean
                    else f"[red]✗ {len(report.chunks_without_vectors)} chunk(s) without vectors, "
                    f"{len(report.vectors_without_chunks)} orphan vector(s)[/]"
                )
                table.add_row(table_name, f"{repo.count_vectors(table_name):,}", verdict)
            console.print(Panel(table, title="[bold]Vector Index[/]", expand=False))

    tiers = Table(show_header=False, box=None, padding=(0, 1))
    tiers.add_column("Status", width=3)
    tiers.add_column("Capability")
    for enabled, label in (
        (vector_loaded, "vector index (sqlite-vec)"),
        (registry.has_embedding_credentials(), f"embedding ({cfg.embedding.model})"),
        (registry.has_completion_credentials(), f"completion ({cfg.completion.model})"),
    ):
        tiers.add_row("[green]✓[/]" if enabled else "[yellow]✗[/]", label)
    console.print(Panel(tiers, title="[bold]Capabilities[/]", expand=False))

    if not vector_loaded:
        console.print(warn_no_vector_index())
    if not registry.has_embedding_credentials():
        console.print(err_no_api_key(cfg.embedding.model, "vector search"))
    if not registry.has_completion_credentials():
        console.print(err_no_api_key(cfg.completion.model, "expansion and re-rank"))
