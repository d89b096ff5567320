"""noteindex init — create the index database and config files.

Creates:
  .noteindex.db              — empty index with schema (+ vec tables if sqlite-vec loads)
  noteindex.yaml             — per-project config template next to the database
  ~/.noteindex/config.yaml   — global model config (created once, mode 0o600)
"""

from __future__ import annotations

from contextlib import closing
from pathlib import Path
from typing import Annotated

import typer

from noteindex.cli.common import DEFAULT_DB, console, load_cfg, open_database
from noteindex.cli.errors import warn_no_vector_index
from noteindex.config import ensure_global_config
from noteindex.db.vectors import ensure_vec_tables

_PROJECT_TEMPLATE = """\
# noteindex per-project configuration (overrides ~/.noteindex/config.yaml).
# API keys never go here; export OPENAI_API_KEY / ANTHROPIC_API_KEY instead.

search:
  result_limit: 15

cluster:
  min_summaries: 5
  min_interval_hours: 23
"""


def init_cmd(
    db: Annotated[
        Path,
        typer.Option("--db", help="Path of the database to create."),
    ] = DEFAULT_DB,
) -> None:
    """Create the index database, a project config and the global config."""
    existed = db.exists()

    cfg_path = ensure_global_config()
    console.print(f"  [green]✓[/] {cfg_path} (global config)")

    project_cfg = db.resolve().parent / "noteindex.yaml"
    if not project_cfg.exists():
        project_cfg.parent.mkdir(parents=True, exist_ok=True)
        project_cfg.write_text(_PROJECT_TEMPLATE, encoding="utf-8")
        console.print(f"  [green]✓[/] {project_cfg}")

    cfg = load_cfg(db)
    database = open_database(db, create=True)
    with closing(database.connect()) as conn:
        if database.is_vector_index_loaded():
            chunks_table, clusters_table = ensure_vec_tables(
                conn, cfg.embedding.model, cfg.embedding.dimensions
            )
            console.print(f"  [green]✓[/] vector tables {chunks_table}, {clusters_table}")
        else:
            console.print(warn_no_vector_index())

    state = "already existed; schema is current" if existed else "created"
    console.print(f"  [green]✓[/] {db} ({state})")
    console.print("\nNext: noteindex add --title <title> --file <path>")
