"""LLM re-ranking of the top fused candidates in a single call."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence

from noteindex.errors import ProviderError
from noteindex.providers import CompletionProvider
from noteindex.search.fusion import SearchCandidate

logger = logging.getLogger(__name__)


def rerank(
    provider: CompletionProvider,
    query: str,
    candidates: Sequence[SearchCandidate],
    titles: Mapping[str, str],
    excerpt_chars: int = 250,
) -> list[SearchCandidate]:
    """Order *candidates* by the provider's 0–10 relevance scores.

    Ties keep fusion order. A failed call or a response whose length does not
    match the candidate count leaves the fusion order untouched.
    """
    if len(candidates) < 2:
        return list(candidates)

    described = [
        f"{titles.get(c.document_id, '')}\n{(c.excerpt or '')[:excerpt_chars]}".strip()
        for c in candidates
    ]
    try:
        scores = provider.rank(query, described)
    except ProviderError as exc:
        logger.warning("Re-rank failed, keeping fusion order: %s", exc)
        return list(candidates)
    if len(scores) != len(candidates):
        logger.warning(
            "Re-rank returned %d scores for %d candidates; keeping fusion order",
            len(scores),
            len(candidates),
        )
        return list(candidates)

    order = sorted(range(len(candidates)), key=lambda i: -scores[i])
    return [candidates[i] for i in order]
