"""Sentence-bounded chunker with overlap and a contextual title prefix.

Splits a document body into layer-1 chunks:
  1. Split on sentence-ending punctuation followed by whitespace
  2. Accumulate whole sentences until max_chars would be exceeded
  3. Back up whole sentences until >= overlap_chars are repeated in the next chunk

What gets embedded is ``context_text`` ("Document: {title}\\n\\n{text}"), not
the raw chunk text.
"""

from __future__ import annotations

import re

from noteindex.db.models import LAYER_RAW, Chunk

_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


class SentenceChunker:
    """Split plain text into overlapping, sentence-bounded chunks.

    Budgets are in characters: 1600 ≈ 400 tokens, 200 ≈ 50 tokens at
    4 chars/token. A single sentence longer than ``max_chars`` becomes its own
    chunk rather than being split mid-sentence.
    """

    def __init__(
        self, max_chars: int = 1600, overlap_chars: int = 200, label: str = "Document"
    ) -> None:
        if max_chars < 1:
            raise ValueError("max_chars must be >= 1")
        if not 0 <= overlap_chars < max_chars:
            raise ValueError("overlap_chars must be in [0, max_chars)")
        self.max_chars = max_chars
        self.overlap_chars = overlap_chars
        self.label = label

    def chunk(self, document_id: str, text: str, title: str = "") -> list[Chunk]:
        """Split *text* into layer-1 Chunk objects with sequential positions."""
        sentences = split_sentences(text)
        if not sentences:
            return []

        chunks: list[Chunk] = []
        i = 0
        while i < len(sentences):
            current = sentences[i]
            j = i + 1
            while j < len(sentences):
                candidate = f"{current} {sentences[j]}"
                if len(candidate) > self.max_chars:
                    break
                current = candidate
                j += 1

            chunks.append(
                Chunk(
                    document_id=document_id,
                    text=current,
                    context_text=self.context_for(title, current),
                    layer=LAYER_RAW,
                    position=len(chunks),
                )
            )
            if j >= len(sentences):
                break

            # Step back from j until the overlap budget is covered; the next
            # start must stay strictly after i.
            start = j
            covered = 0
            while start > i + 1 and covered < self.overlap_chars:
                start -= 1
                covered += len(sentences[start]) + (1 if covered else 0)
            i = start
        return chunks

    def context_for(self, title: str, text: str) -> str:
        return f"{self.label}: {title}\n\n{text}"


def split_sentences(text: str) -> list[str]:
    """Split *text* on sentence boundaries; whitespace-only input yields []."""
    trimmed = text.strip()
    if not trimmed:
        return []
    return [s.strip() for s in _SENTENCE_END.split(trimmed) if s.strip()]
