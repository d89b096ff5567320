"""noteindex recover / cluster — background work run on demand."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from noteindex.cli.common import DEFAULT_DB, build_registry, console, load_cfg, open_database
from noteindex.cluster.scheduler import ClusterScheduler
from noteindex.ingest.pipeline import ImmediateSpawner, IndexPipeline


def recover_cmd(
    db: Annotated[Path, typer.Option("--db", help="Path to .noteindex.db.")] = DEFAULT_DB,
) -> None:
    """Re-index documents left dirty by an interrupted or failed run."""
    cfg = load_cfg(db)
    database = open_database(db)
    registry = build_registry(cfg)
    pipeline = IndexPipeline(database, registry, cfg, spawner=ImmediateSpawner())
    rebuilt = pipeline.recover_dirty()
    console.print(f"Recovered [bold]{rebuilt}[/] document(s).")


def cluster_cmd(
    now: Annotated[
        bool,
        typer.Option("--now", help="Ignore the minimum interval since the last run."),
    ] = False,
    db: Annotated[Path, typer.Option("--db", help="Path to .noteindex.db.")] = DEFAULT_DB,
) -> None:
    """Rebuild the layer-3 cluster themes if due (or immediately with --now)."""
    cfg = load_cfg(db)
    scheduler = ClusterScheduler(open_database(db), build_registry(cfg), cfg.cluster)
    ran = scheduler.run_now() if now else scheduler.run_if_due()
    if ran:
        console.print("[green]✓[/] Cluster tier rebuilt.")
    else:
        console.print(
            "[dim]Cluster run skipped or stored no clusters (capability missing, "
            "too few summaries, run too recently, or every theme failed).[/]"
        )
