"""LiteLLM-backed embedding and completion providers.

All embedding + completion calls in the indexing and search pipelines route
through this module. LiteLLM's built-in retry is used (num_retries=3); the
core never retries on top of it. Every failure surfaces as ProviderError.

ProviderRegistry holds the current credentials and the constructed clients
and only rebuilds a client when its credential changes.
"""

from __future__ import annotations

import json
import logging
import math
import os
import re
import threading
from collections.abc import Callable, Sequence

import litellm
import numpy as np

from noteindex.config import CompletionCfg, EmbeddingCfg
from noteindex.errors import ProviderError

logger = logging.getLogger(__name__)

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True

# Marker credential for providers that need no key (local models)
LOCAL_KEY = "local"

# ------------------------------------------------------------------
# Provider → env var mapping for API key lookup
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "groq": "GROQ_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}

_RANK_PROMPT = """\
Rate how relevant each numbered note is to the search query, on a scale \
from 0 (unrelated) to 10 (directly answers the query).

Query: {query}

Notes:
{candidates}

Respond with ONLY a JSON array of {count} integers, one per note, in the same \
order as the notes above. No explanation."""

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def env_var_for(model: str) -> str | None:
    """Return the env var holding the API key for *model*'s provider.

    Unknown providers fall back to OPENAI_API_KEY; keyless providers return None.
    """
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    return _PROVIDER_ENV.get(provider, "OPENAI_API_KEY")


def credential_from_env(model: str) -> str:
    """Return the credential for *model* from the environment ("" if unset)."""
    env_var = env_var_for(model)
    if env_var is None:
        return LOCAL_KEY
    return os.getenv(env_var, "")


def strip_code_fences(text: str) -> str:
    """Remove optional markdown code fences models sometimes add around JSON."""
    return _FENCE_RE.sub("", text.strip()).strip()


def _is_score(value: object) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and math.isfinite(value)


# ------------------------------------------------------------------
# Providers
# ------------------------------------------------------------------


class EmbeddingProvider:
    """Batch text embedder returning unit-norm vectors.

    Args:
        model: LiteLLM embedding model string (provider/model format).
        api_key: Provider credential (None for keyless providers).
        dimensions: Expected vector size; mismatching responses are rejected.
        batch_size: Maximum texts per API request.
        num_retries: Retries on transient errors (LiteLLM backoff).
    """

    def __init__(
        self,
        model: str,
        api_key: str | None,
        dimensions: int,
        batch_size: int = 100,
        num_retries: int = 3,
    ) -> None:
        self.model = model
        self._api_key = api_key
        self.dimensions = dimensions
        self._batch_size = max(1, batch_size)
        self._num_retries = num_retries

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed *texts*; one vector per input, in input order.

        Raises:
            ProviderError: On API failure or a malformed response.
        """
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self._batch_size):
            batch = list(texts[start:start + self._batch_size])
            try:
                response = litellm.embedding(
                    model=self.model,
                    input=batch,
                    api_key=self._api_key,
                    num_retries=self._num_retries,
                )
            except Exception as exc:
                raise ProviderError(f"Embedding request failed ({self.model}): {exc}") from exc
            vectors.extend(self._parse(response, len(batch)))
        return vectors

    def _parse(self, response: object, expected: int) -> list[list[float]]:
        data = list(getattr(response, "data", None) or [])
        if len(data) != expected:
            raise ProviderError(
                f"Embedding response has {len(data)} vectors for {expected} inputs"
            )
        items = sorted(
            enumerate(data), key=lambda pair: _field(pair[1], "index", pair[0])
        )
        vectors: list[list[float]] = []
        for _, item in items:
            vector = _field(item, "embedding", None)
            if vector is None or len(vector) != self.dimensions:
                raise ProviderError(
                    f"Embedding has {0 if vector is None else len(vector)} dimensions, "
                    f"expected {self.dimensions}"
                )
            vectors.append(normalize(vector))
        return vectors


class CompletionProvider:
    """Single-turn text completion plus batch relevance ranking.

    Args:
        model: LiteLLM model string (provider/model format).
        api_key: Provider credential (None for keyless providers).
        num_retries: Retries on transient errors (LiteLLM backoff).
    """

    def __init__(self, model: str, api_key: str | None, num_retries: int = 3) -> None:
        self.model = model
        self._api_key = api_key
        self._num_retries = num_retries

    def complete(self, prompt: str, max_tokens: int = 300, temperature: float = 0.0) -> str:
        """Return the stripped text of the first choice.

        Raises:
            ProviderError: On API failure or empty content.
        """
        try:
            response = litellm.completion(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=max_tokens,
                temperature=temperature,
                api_key=self._api_key,
                num_retries=self._num_retries,
            )
            content = response.choices[0].message.content or ""
        except Exception as exc:
            raise ProviderError(f"Completion request failed ({self.model}): {exc}") from exc
        content = content.strip()
        if not content:
            raise ProviderError(f"Completion returned no text ({self.model})")
        return content

    def rank(self, query: str, candidates: Sequence[str]) -> list[int]:
        """Score each candidate 0–10 for relevance to *query*, in input order.

        The returned list may have the wrong length if the model misbehaves;
        callers must check it.

        Raises:
            ProviderError: On API failure or output that is not a JSON array
                of finite numbers.
        """
        if not candidates:
            return []
        numbered = "\n\n".join(f"[{i + 1}] {c}" for i, c in enumerate(candidates))
        prompt = _RANK_PROMPT.format(query=query, candidates=numbered, count=len(candidates))
        text = self.complete(prompt, max_tokens=20 + 4 * len(candidates))
        try:
            parsed = json.loads(strip_code_fences(text))
        except json.JSONDecodeError as exc:
            raise ProviderError(f"Rank response is not JSON: {text[:80]!r}") from exc
        if not isinstance(parsed, list) or not all(_is_score(v) for v in parsed):
            raise ProviderError(f"Rank response is not a list of finite numbers: {text[:80]!r}")
        return [max(0, min(10, int(round(v)))) for v in parsed]


# ------------------------------------------------------------------
# Registry
# ------------------------------------------------------------------

EmbedderFactory = Callable[[str], EmbeddingProvider]
CompleterFactory = Callable[[str], CompletionProvider]


class ProviderRegistry:
    """Current credentials + lazily shared provider clients.

    ``set_*_credentials`` only rebuilds a client when the credential actually
    changes; an empty credential clears the client (capability absent).

    Args:
        embedding: Embedding model configuration.
        completion: Completion model configuration.
        embedder_factory: Builds an embedder from a credential (tests inject fakes).
        completer_factory: Builds a completer from a credential.
    """

    def __init__(
        self,
        embedding: EmbeddingCfg | None = None,
        completion: CompletionCfg | None = None,
        *,
        embedder_factory: EmbedderFactory | None = None,
        completer_factory: CompleterFactory | None = None,
    ) -> None:
        self._embedding_cfg = embedding or EmbeddingCfg()
        self._completion_cfg = completion or CompletionCfg()
        self._embedder_factory = embedder_factory or self._default_embedder
        self._completer_factory = completer_factory or self._default_completer
        self._lock = threading.Lock()
        self._embedding_key = ""
        self._completion_key = ""
        self._embedder: EmbeddingProvider | None = None
        self._completer: CompletionProvider | None = None

    @classmethod
    def from_env(
        cls, embedding: EmbeddingCfg, completion: CompletionCfg
    ) -> ProviderRegistry:
        """Build a registry with credentials read from the provider env vars."""
        registry = cls(embedding, completion)
        registry.set_embedding_credentials(credential_from_env(embedding.model))
        registry.set_completion_credentials(credential_from_env(completion.model))
        return registry

    @property
    def embedding_model(self) -> str:
        return self._embedding_cfg.model

    @property
    def dimensions(self) -> int:
        return self._embedding_cfg.dimensions

    def set_embedding_credentials(self, key: str) -> None:
        with self._lock:
            if key == self._embedding_key:
                return
            self._embedder = self._embedder_factory(key) if key else None
            self._embedding_key = key
        logger.debug("Embedding credentials %s", "set" if key else "cleared")

    def set_completion_credentials(self, key: str) -> None:
        with self._lock:
            if key == self._completion_key:
                return
            self._completer = self._completer_factory(key) if key else None
            self._completion_key = key
        logger.debug("Completion credentials %s", "set" if key else "cleared")

    def has_embedding_credentials(self) -> bool:
        return self._embedder is not None

    def has_completion_credentials(self) -> bool:
        return self._completer is not None

    @property
    def embedder(self) -> EmbeddingProvider | None:
        return self._embedder

    @property
    def completer(self) -> CompletionProvider | None:
        return self._completer

    def _default_embedder(self, key: str) -> EmbeddingProvider:
        cfg = self._embedding_cfg
        return EmbeddingProvider(
            cfg.model,
            None if key == LOCAL_KEY else key,
            dimensions=cfg.dimensions,
            batch_size=cfg.batch_size,
        )

    def _default_completer(self, key: str) -> CompletionProvider:
        return CompletionProvider(
            self._completion_cfg.model, None if key == LOCAL_KEY else key
        )


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def normalize(vector: Sequence[float]) -> list[float]:
    """Return *vector* scaled to unit length (zero vectors are returned as-is)."""
    arr = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(arr)
    if norm > 0:
        arr = arr / norm
    return arr.tolist()


def _field(item: object, name: str, default: object) -> object:
    if isinstance(item, dict):
        return item.get(name, default)
    return getattr(item, name, default)
