"""noteindex database layer."""

from noteindex.db.connection import Database
from noteindex.db.migrations import MIGRATIONS, run_migrations
from noteindex.db.paired_store import OrphanReport, PairedStore
from noteindex.db.repository import Repository
from noteindex.db.schema import initialize
from noteindex.db.vectors import (
    ensure_vec_table,
    ensure_vec_tables,
    model_to_slug,
    vec_table_name,
)

__all__ = [
    "Database",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "OrphanReport",
    "PairedStore",
    "Repository",
    "ensure_vec_table",
    "ensure_vec_tables",
    "model_to_slug",
    "vec_table_name",
]
