"""Logging configuration.

Modules log through ``logging.getLogger(__name__)``; only the CLI calls
configure_logging(). Console output goes through rich.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_NOISY_LOGGERS = ("LiteLLM", "litellm", "httpx", "httpcore", "openai")


def configure_logging(verbose: bool = False, console: Console | None = None) -> None:
    """Install a single RichHandler on the ``noteindex`` logger.

    Args:
        verbose: DEBUG level instead of INFO.
        console: Console to write to (defaults to stderr).
    """
    logger = logging.getLogger("noteindex")
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=verbose,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s", datefmt="[%X]"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False

    # Reduce noise from verbose third-party libraries
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
