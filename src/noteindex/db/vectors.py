"""Per-model sqlite-vec virtual table management.

Two vec tables exist per embedding model:
  vec_chunks_{slug}    layer-1 chunks and layer-2 summaries
  vec_clusters_{slug}  layer-3 cluster themes
Both key rows by chunks.id and use cosine distance.
"""

from __future__ import annotations

import re
import sqlite3

CHUNKS_KIND = "chunks"
CLUSTERS_KIND = "clusters"


def model_to_slug(model: str) -> str:
    """Convert a provider/model string to a valid table name suffix.

    Examples:
        "openai/text-embedding-3-small" -> "openai_text_embedding_3_small"
        "cohere/embed-english-v3.0" -> "cohere_embed_english_v3_0"
    """
    return re.sub(r"[^a-z0-9]", "_", model.lower())


def vec_table_name(model_slug: str, kind: str = CHUNKS_KIND) -> str:
    """Return the full vec table name for a model slug."""
    if kind not in (CHUNKS_KIND, CLUSTERS_KIND):
        raise ValueError(f"Unknown vec table kind '{kind}'")
    return f"vec_{kind}_{model_slug}"


def vec_table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()
    return row is not None


def ensure_vec_table(
    conn: sqlite3.Connection,
    model_slug: str,
    dimensions: int,
    kind: str = CHUNKS_KIND,
) -> str:
    """Create the vec table for *model_slug* if it doesn't already exist.

    Args:
        conn: Active database connection (sqlite-vec must be loaded).
        model_slug: Sanitized model identifier (use model_to_slug() to generate).
        dimensions: Embedding vector dimensions (e.g. 1536 for text-embedding-3-small).
        kind: "chunks" (layers 1-2) or "clusters" (layer 3).

    Returns:
        The table name.
    """
    if not re.fullmatch(r"[a-z0-9_]+", model_slug):
        raise ValueError(
            f"Invalid model_slug '{model_slug}' — use model_to_slug() to sanitize."
        )
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    table = vec_table_name(model_slug, kind)
    if not vec_table_exists(conn, table):
        conn.execute(
            f"CREATE VIRTUAL TABLE {table} USING vec0("
            f"embedding float[{dimensions}] distance_metric=cosine)"
        )
        conn.commit()

    return table


def ensure_vec_tables(
    conn: sqlite3.Connection, model: str, dimensions: int
) -> tuple[str, str]:
    """Create both vec tables for *model*; returns (chunks_table, clusters_table)."""
    slug = model_to_slug(model)
    return (
        ensure_vec_table(conn, slug, dimensions, CHUNKS_KIND),
        ensure_vec_table(conn, slug, dimensions, CLUSTERS_KIND),
    )
