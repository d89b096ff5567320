"""Entity mention detection — the enrichment sub-pipeline.

Asks the completion provider which known entities a document mentions and
stores the hits as ``auto_detected`` entity mentions. These mentions feed the
shared-entity relation used by graph expansion at query time.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from noteindex.db.models import Entity
from noteindex.providers import CompletionProvider, strip_code_fences

logger = logging.getLogger(__name__)

# 4000 chars ≈ 1000 tokens of document content
MAX_BODY_CHARS = 4000
# Cap to keep very large entity lists inside the model's context
MAX_ENTITIES = 150
# Detections below this are treated as speculative
MIN_CONFIDENCE = 0.6

_DETECT_PROMPT = """\
Analyze the following note and identify which known entities are mentioned or \
clearly referenced in it (by name, pronoun, or unambiguous implication).

Known entities (JSON, one per line):
{entities}

Note title: {title}

Note content:
{body}

Respond with ONLY a JSON array. Each element must have:
- "entity_id": the exact id string from the known entities list
- "confidence": float 0.0-1.0 (1.0 = exact name match; lower for indirect references)

Do not include entities not in the known entities list. If none are mentioned, respond with []."""


@dataclass
class Detection:
    entity_id: str
    confidence: float


class EntityDetector:
    """Detect known-entity mentions in a document via the completion provider."""

    def __init__(self, provider: CompletionProvider, min_confidence: float = MIN_CONFIDENCE) -> None:
        self._provider = provider
        self._min_confidence = min_confidence

    def detect(self, title: str, body: str, entities: Sequence[Entity]) -> list[Detection]:
        """Return detections with confidence >= min_confidence.

        Raises:
            ProviderError: If the completion call fails. Unparsable output is
                logged and treated as "no mentions".
        """
        if not entities or not body.strip():
            return []

        subset = list(entities)[:MAX_ENTITIES]
        truncated = body if len(body) <= MAX_BODY_CHARS else body[:MAX_BODY_CHARS] + "…"
        prompt = _DETECT_PROMPT.format(
            entities="\n".join(json.dumps({"id": e.id, "name": e.name}) for e in subset),
            title=title,
            body=truncated,
        )
        text = self._provider.complete(prompt, max_tokens=512)
        return self._parse(text, {e.id for e in subset})

    def _parse(self, text: str, valid_ids: set[str]) -> list[Detection]:
        try:
            parsed = json.loads(strip_code_fences(text))
        except json.JSONDecodeError:
            logger.warning("Entity detection returned non-JSON output: %r", text[:80])
            return []
        if not isinstance(parsed, list):
            return []

        detections: dict[str, Detection] = {}
        for item in parsed:
            if not isinstance(item, dict):
                continue
            entity_id = item.get("entity_id")
            confidence = item.get("confidence")
            if not isinstance(entity_id, str) or entity_id not in valid_ids:
                continue
            if not isinstance(confidence, (int, float)) or isinstance(confidence, bool):
                continue
            confidence = max(0.0, min(1.0, float(confidence)))
            if confidence < self._min_confidence:
                continue
            best = detections.get(entity_id)
            if best is None or confidence > best.confidence:
                detections[entity_id] = Detection(entity_id, confidence)
        return list(detections.values())
