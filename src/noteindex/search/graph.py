"""One-hop graph expansion from a seed set of matched documents."""

from __future__ import annotations

from collections.abc import Sequence

from noteindex.db.repository import Repository

LINK = "link"
ENTITY = "entity"


def expand_neighbors(
    repo: Repository, seed_ids: Sequence[str], limit: int = 5
) -> list[tuple[str, str]]:
    """Return [(document_id, relation), ...] for neighbours of *seed_ids*.

    Explicit links (either direction) come first, then shared-entity
    neighbours; each relation contributes at most *limit* documents, ranked
    by overlap with the seed set, never repeating a seed or an earlier pick.
    """
    if not seed_ids:
        return []
    selected = set(seed_ids)
    expanded: list[tuple[str, str]] = []
    for relation, neighbors in (
        (LINK, repo.link_neighbors(seed_ids)),
        (ENTITY, repo.entity_neighbors(seed_ids)),
    ):
        taken = 0
        for document_id, _overlap in neighbors:
            if taken >= limit:
                break
            if document_id in selected:
                continue
            selected.add(document_id)
            expanded.append((document_id, relation))
            taken += 1
    return expanded
