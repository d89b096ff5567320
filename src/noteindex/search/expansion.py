"""Query expansion: related terms used to widen the lexical search."""

from __future__ import annotations

import json
import logging
import re

from noteindex.errors import ProviderError
from noteindex.providers import CompletionProvider, strip_code_fences

logger = logging.getLogger(__name__)

MAX_TERMS = 8

_LIST_MARKER = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s*")

_EXPAND_PROMPT = """\
Generate 4-8 search terms for finding notes relevant to the query below: \
related keywords, synonyms, and short rephrasings. Use the same language as \
the query.

Query: {query}

Respond with ONLY a JSON array of strings."""


def expand_query(provider: CompletionProvider, query: str) -> list[str]:
    """Return up to 8 expansion terms for *query*; [] on any provider failure."""
    try:
        text = provider.complete(_EXPAND_PROMPT.format(query=query), max_tokens=120)
    except ProviderError as exc:
        logger.warning("Query expansion failed, using raw query: %s", exc)
        return []
    return parse_terms(text)


def parse_terms(text: str) -> list[str]:
    """Parse a JSON array of strings, or one term per line as a fallback."""
    cleaned = strip_code_fences(text)
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        parsed = [_LIST_MARKER.sub("", line).strip() for line in cleaned.splitlines()]
    if not isinstance(parsed, list):
        return []

    terms: list[str] = []
    seen: set[str] = set()
    for item in parsed:
        if not isinstance(item, str):
            continue
        term = item.strip().strip('"').strip()
        if term and term.lower() not in seen:
            seen.add(term.lower())
            terms.append(term)
    return terms[:MAX_TERMS]
