"""noteindex rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from noteindex.cli.errors import err_no_db
    console.print(err_no_db(str(db)))
    raise typer.Exit(1)
"""

from __future__ import annotations

from noteindex.providers import env_var_for


def err_no_api_key(model: str, capability: str) -> str:
    """No credential for *model* — *capability* is disabled.

    Example:
        No API key for 'openai/text-embedding-3-small' (vector search disabled).
          Set:  export OPENAI_API_KEY=...
    """
    env_var = env_var_for(model) or "the provider's API key variable"
    return (
        f"[yellow]Warning:[/] No API key for '{model}' ({capability} disabled).\n"
        f"  Set:  export {env_var}=..."
    )


def err_no_db(db_path: str) -> str:
    """Database file does not exist."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  noteindex init  to create it."
    )


def err_config(message: str) -> str:
    """Config file is invalid or contains a forbidden key."""
    return f"[red]Error:[/] {message}"


def err_file_not_found(path: str) -> str:
    """Input file for ``noteindex add`` is missing."""
    return (
        f"[red]Error:[/] File not found: '{path}'\n"
        "  Check the path, or pipe the text in with  --file -"
    )


def err_document_not_found(document_id: str) -> str:
    """Link target is not in the database."""
    return (
        f"[red]Error:[/] Document '{document_id}' does not exist.\n"
        "  Add the target first; noteindex add prints the id of each saved document."
    )


def warn_no_vector_index() -> str:
    """sqlite-vec could not be loaded."""
    return (
        "[yellow]Warning:[/] sqlite-vec is not available; search is lexical only.\n"
        "  Install:  pip install sqlite-vec  (requires a Python built with extension loading)"
    )
