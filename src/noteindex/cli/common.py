"""Helpers shared by the CLI commands: config, database, providers."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import typer
from rich.console import Console

from noteindex.cli.errors import err_config, err_no_db
from noteindex.config import ConfigError, NoteIndexConfig, load_config
from noteindex.db.connection import Database
from noteindex.db.schema import initialize
from noteindex.providers import ProviderRegistry

console = Console()

DEFAULT_DB = Path(".noteindex.db")


def load_cfg(db: Path) -> NoteIndexConfig:
    """Load config from the database's directory; exit 1 on a bad config."""
    try:
        return load_config(db.resolve().parent)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc


def open_database(db: Path, *, create: bool = False) -> Database:
    """Return a Database with the schema applied; exit 1 if it is missing."""
    if not create and not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)
    if create:
        db.parent.mkdir(parents=True, exist_ok=True)
    database = Database(db)
    conn = database.connect()
    try:
        initialize(conn)
    except sqlite3.Error as exc:
        console.print(f"[red]Error:[/] Could not open database '{db}': {exc}")
        raise typer.Exit(1) from exc
    finally:
        conn.close()
    return database


def build_registry(cfg: NoteIndexConfig) -> ProviderRegistry:
    return ProviderRegistry.from_env(cfg.embedding, cfg.completion)
