"""Domain models for the noteindex database layer."""

from __future__ import annotations

import json
from dataclasses import dataclass

# Embedding tiers stored in chunks.layer
LAYER_RAW = 1
LAYER_SUMMARY = 2
LAYER_CLUSTER = 3


@dataclass
class Document:
    id: str
    title: str
    body: str
    updated_at: str | None = None
    archived_at: str | None = None
    index_dirty: bool = False

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None


@dataclass
class Entity:
    id: str
    name: str


@dataclass
class Chunk:
    document_id: str
    text: str
    context_text: str = ""
    layer: int = LAYER_RAW
    position: int = 0
    created_at: str | None = None
    id: int | None = None  # set after insert; None for unsaved chunks

    @property
    def member_ids(self) -> list[str]:
        """Member document ids of a layer-3 cluster chunk."""
        if self.layer != LAYER_CLUSTER or not self.context_text:
            return []
        return [str(m) for m in json.loads(self.context_text)]
