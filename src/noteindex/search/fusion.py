"""Reciprocal Rank Fusion and the score adjustments applied after it.

  score(d) = Σ over lists of 1 / (k + rank_in_list)     rank is 0-based, k = 60

A document present in several lists sums every contribution, so it always
outscores an otherwise-equal document found by only one signal.
"""

from __future__ import annotations

from collections.abc import Collection, Sequence
from dataclasses import dataclass

DEFAULT_RRF_K = 60

# (document_id, excerpt) in best-first order
RankedList = Sequence[tuple[str, str | None]]


@dataclass
class SearchCandidate:
    """A document under consideration with its running fusion score.

    Attributes:
        document_id: Candidate document.
        score: RRF score plus any boosts (higher = more relevant).
        excerpt: First non-null excerpt seen across the fused lists.
        hits: Number of ranked lists the document appeared in.
    """

    document_id: str
    score: float
    excerpt: str | None = None
    hits: int = 0


def rrf_fuse(lists: Sequence[RankedList], k: int = DEFAULT_RRF_K) -> list[SearchCandidate]:
    """Fuse ranked lists; best-first, ties keep first-seen order."""
    merged: dict[str, SearchCandidate] = {}
    for ranked in lists:
        seen: set[str] = set()
        for rank, (document_id, excerpt) in enumerate(ranked):
            if document_id in seen:
                continue
            seen.add(document_id)
            candidate = merged.get(document_id)
            if candidate is None:
                candidate = merged[document_id] = SearchCandidate(document_id, 0.0)
            candidate.score += 1.0 / (k + rank)
            candidate.hits += 1
            if candidate.excerpt is None and excerpt is not None:
                candidate.excerpt = excerpt
    return sorted(merged.values(), key=lambda c: -c.score)


def apply_cluster_boost(
    candidates: Sequence[SearchCandidate],
    boost_ids: Collection[str],
    boost: float = 0.05,
) -> list[SearchCandidate]:
    """Add a flat *boost* to candidates in *boost_ids* and re-sort (stable)."""
    for candidate in candidates:
        if candidate.document_id in boost_ids:
            candidate.score += boost
    return sorted(candidates, key=lambda c: -c.score)


def backfill_score(rank: int = 21, k: int = DEFAULT_RRF_K) -> float:
    """Score floor for backfilled matches: a single RRF hit at *rank*."""
    return 1.0 / (k + rank)
