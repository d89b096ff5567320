"""noteindex CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from noteindex.cli.add import add_cmd
from noteindex.cli.init import init_cmd
from noteindex.cli.maintenance import cluster_cmd, recover_cmd
from noteindex.cli.search import context_cmd, search_cmd
from noteindex.cli.status import status_cmd
from noteindex.logging_setup import configure_logging


def _version() -> str:
    try:
        return importlib.metadata.version("noteindex")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"noteindex {_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="noteindex",
    help=(
        "noteindex — hybrid search index for personal notes.\n\n"
        "  noteindex init     Create the index database and config.\n"
        "  noteindex add      Save a document and index it.\n"
        "  noteindex search   Ranked lexical + vector search."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Debug logging."),
    ] = False,
) -> None:
    """noteindex — hybrid search index for personal notes."""
    configure_logging(verbose=verbose)


app.command("init")(init_cmd)
app.command("add")(add_cmd)
app.command("search")(search_cmd)
app.command("context")(context_cmd)
app.command("recover")(recover_cmd)
app.command("cluster")(cluster_cmd)
app.command("status")(status_cmd)


if __name__ == "__main__":
    app()
