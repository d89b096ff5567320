"""Exception types raised inside the indexing core.

Capability absence (no vector index, no credentials, too little data) is never
an exception — callers check the probes and return early.
"""

from __future__ import annotations


class NoteIndexError(Exception):
    """Base class for noteindex errors."""


class ProviderError(NoteIndexError):
    """An embedding or completion call failed or returned malformed data.

    Always treated as a non-fatal failure of the stage that made the call.
    """
