"""noteindex add — save a document and index it.

Stands in for the editor's save path: upserts the document, then runs the
save pipeline (embedding + enrichment) and waits for it to settle.
"""

from __future__ import annotations

import sys
import uuid
from contextlib import closing
from pathlib import Path
from typing import Annotated

import typer

from noteindex.cli.common import DEFAULT_DB, build_registry, console, load_cfg, open_database
from noteindex.cli.errors import err_document_not_found, err_file_not_found
from noteindex.db.models import Document
from noteindex.db.repository import Repository
from noteindex.ingest.pipeline import ImmediateSpawner, IndexPipeline


def add_cmd(
    title: Annotated[str, typer.Option("--title", "-t", help="Document title.")],
    file: Annotated[
        str,
        typer.Option("--file", "-f", help="Text file with the document body ('-' for stdin)."),
    ],
    document_id: Annotated[
        str | None,
        typer.Option("--id", help="Document id (updates the document if it exists)."),
    ] = None,
    link: Annotated[
        list[str] | None,
        typer.Option("--link", "-l", help="Id of a document this one links to (repeatable)."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .noteindex.db (created if missing)."),
    ] = DEFAULT_DB,
) -> None:
    """Save a document and rebuild its index entries."""
    if file == "-":
        body = sys.stdin.read()
    else:
        path = Path(file)
        if not path.is_file():
            console.print(err_file_not_found(file))
            raise typer.Exit(1)
        body = path.read_text(encoding="utf-8")

    cfg = load_cfg(db)
    database = open_database(db, create=True)
    document_id = document_id or uuid.uuid4().hex

    with closing(database.connect()) as conn:
        repo = Repository(conn)
        for target in link or []:
            if repo.get_document(target) is None:
                console.print(err_document_not_found(target))
                raise typer.Exit(1)
        repo.upsert_document(Document(id=document_id, title=title, body=body))
        for target in link or []:
            repo.add_link(document_id, target)

    pipeline = IndexPipeline(database, build_registry(cfg), cfg, spawner=ImmediateSpawner())
    pipeline.on_document_saved(document_id).wait()

    with closing(database.connect()) as conn:
        saved = Repository(conn).get_document(document_id)
    state = "[yellow]pending (dirty)[/]" if saved and saved.index_dirty else "[green]indexed[/]"
    console.print(f"Saved [bold]{title}[/] [dim]({document_id})[/]: {state}")
