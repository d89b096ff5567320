"""Document summarizer — the layer-2 summary of one document.

Called by the embedding pipeline after layer 1 is committed. The summary is
stored as the document's single layer-2 chunk and embedded for search.
"""

from __future__ import annotations

from noteindex.errors import ProviderError
from noteindex.providers import CompletionProvider

_SUMMARY_PROMPT = """\
Summarize the following note in 2-4 sentences for semantic search indexing. \
Capture the main topics, decisions, and key information. Be factual and \
specific; do not speculate beyond what the note says. Write the summary in \
the same language as the note.

Note title: {title}

Note content:
{body}

Summary:"""

_DEFAULT_MAX_CHARS = 6000
_DEFAULT_MAX_TOKENS = 300


class DocumentSummarizer:
    """Generate a retrieval-focused summary for a document.

    Args:
        provider:   Completion provider used for the summary.
        max_chars:  Body characters included in the prompt.
        max_tokens: Maximum tokens in the generated summary.
    """

    def __init__(
        self,
        provider: CompletionProvider,
        max_chars: int = _DEFAULT_MAX_CHARS,
        max_tokens: int = _DEFAULT_MAX_TOKENS,
    ) -> None:
        self._provider = provider
        self._max_chars = max_chars
        self._max_tokens = max_tokens

    def generate(self, title: str, body: str) -> str:
        """Return a 2–4 sentence summary of the document.

        Raises:
            ProviderError: If the completion call fails or returns nothing.
        """
        truncated = body if len(body) <= self._max_chars else body[: self._max_chars] + "…"
        prompt = _SUMMARY_PROMPT.format(title=title, body=truncated)
        summary = self._provider.complete(prompt, max_tokens=self._max_tokens)
        if not summary.strip():
            raise ProviderError("Summary generation returned empty text")
        return summary.strip()
