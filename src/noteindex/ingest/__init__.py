"""Indexing pipeline — chunker, summarizer, entity detection, orchestrator."""

from noteindex.ingest.chunker import SentenceChunker, split_sentences
from noteindex.ingest.pipeline import (
    ImmediateSpawner,
    IndexPipeline,
    SaveEvent,
    Spawner,
    ThreadPoolSpawner,
)

__all__ = [
    "ImmediateSpawner",
    "IndexPipeline",
    "SaveEvent",
    "SentenceChunker",
    "Spawner",
    "ThreadPoolSpawner",
    "split_sentences",
]
