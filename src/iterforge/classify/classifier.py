"""Hybrid command classifier: keyword tables first, LLM escalation second.

Pipeline:
  1. Normalize the prompt (lowercase, trim) and consult the cache.
  2. Match the pattern table; first matching family wins at confidence 85.
  3. Confidence >= threshold: extract entities locally, cache, return.
  4. Otherwise escalate to the classification backend (forced tool call with a
     JSON schema). Any backend failure falls back to GENERATE_API @ 50.
  5. Cache and return.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from iterforge.classify.cache import ClassificationCache, FIFOCache
from iterforge.classify.patterns import (
    KEYWORD_CONFIDENCE,
    CommandType,
    extract_entities,
    match_intent,
)
from iterforge.errors import ClassificationFailure, ValidationError
from iterforge.rag.llm_client import acall_tool

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE_THRESHOLD = 80
FALLBACK_CONFIDENCE = 50
FALLBACK_INTENT = CommandType.GENERATE_API


@dataclass
class ClassificationResult:
    intent: CommandType
    confidence: int
    should_create_new_version: bool = True
    entities: list[str] = field(default_factory=list)
    reasoning: str = ""

    @property
    def is_fallback(self) -> bool:
        return "fallback" in self.reasoning.lower()


class ClassificationBackend(Protocol):
    async def classify(self, prompt: str, existing_paths: list[str]) -> dict[str, Any]:
        """Return the raw classify_command arguments."""
        ...


# ------------------------------------------------------------------
# LLM backend
# ------------------------------------------------------------------

CLASSIFY_TOOL: dict[str, Any] = {
    "name": "classify_command",
    "description": "Classify the user command and extract relevant information",
    "parameters": {
        "type": "object",
        "properties": {
            "command_type": {
                "type": "string",
                "enum": [t.value for t in CommandType],
                "description": "The type of command",
            },
            "confidence": {
                "type": "number",
                "minimum": 0,
                "maximum": 100,
                "description": "Confidence level 0-100",
            },
            "should_create_new_version": {
                "type": "boolean",
                "description": "Whether this command should create a new version",
            },
            "entities": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Extracted file names, function names, or other entities mentioned",
            },
            "reasoning": {
                "type": "string",
                "description": "Brief explanation of the classification",
            },
        },
        "required": [
            "command_type",
            "confidence",
            "should_create_new_version",
            "entities",
            "reasoning",
        ],
    },
}

_CLASSIFY_SYSTEM = """\
You are a command classifier for a code generation system. Classify the user prompt:
- CREATE_FILE: create new files/components/features
- MODIFY_FILE: modify existing files/code
- DELETE_FILE: delete/remove files
- REFACTOR_CODE: restructure/optimize existing code
- GENERATE_API: generate a complete API/backend
- ANSWER_QUESTION: a question about the project; no code changes

Also decide whether this should create a new version (usually yes, unless the
change is trivial) and extract any mentioned file names, functions, or entities.

Current files in project: {files}"""


class LLMClassificationBackend:
    """Classification through a forced LiteLLM tool call."""

    def __init__(
        self,
        model: str = "openai/gpt-4o-mini",
        *,
        max_listed_files: int = 50,
        timeout: float | None = None,
    ) -> None:
        self.model = model
        self.max_listed_files = max_listed_files
        self.timeout = timeout

    async def classify(self, prompt: str, existing_paths: list[str]) -> dict[str, Any]:
        listed = existing_paths[: self.max_listed_files]
        files = ", ".join(listed) if listed else "none (new project)"
        raw = await acall_tool(
            self.model,
            [
                {"role": "system", "content": _CLASSIFY_SYSTEM.format(files=files)},
                {"role": "user", "content": prompt},
            ],
            CLASSIFY_TOOL,
            timeout=self.timeout,
        )
        return json.loads(raw)


# ------------------------------------------------------------------
# Classifier
# ------------------------------------------------------------------


class CommandClassifier:
    def __init__(
        self,
        backend: ClassificationBackend,
        cache: ClassificationCache[ClassificationResult] | None = None,
        *,
        confidence_threshold: int = DEFAULT_CONFIDENCE_THRESHOLD,
    ) -> None:
        self._backend = backend
        self._cache = cache if cache is not None else FIFOCache()
        self.confidence_threshold = confidence_threshold

    async def classify(
        self, prompt: str, existing_paths: list[str] | None = None
    ) -> ClassificationResult:
        """Classify *prompt*. Never raises for backend failures.

        Raises:
            ValidationError: If *prompt* is empty or whitespace.
        """
        if not prompt or not prompt.strip():
            raise ValidationError("Prompt must not be empty.")

        normalized = prompt.lower().strip()
        cached = self._cache.get(normalized)
        if cached is not None:
            logger.debug("Classification cache hit for %r", normalized[:60])
            return cached

        intent = match_intent(normalized)
        confidence = KEYWORD_CONFIDENCE if intent is not None else 0

        if intent is not None and confidence >= self.confidence_threshold:
            result = ClassificationResult(
                intent=intent,
                confidence=confidence,
                should_create_new_version=intent != CommandType.ANSWER_QUESTION,
                entities=extract_entities(prompt),
                reasoning="Keyword pattern match",
            )
        else:
            result = await self._escalate(prompt, list(existing_paths or []))

        self._cache.put(normalized, result)
        logger.info(
            "Classified prompt as %s (%d%%): %s",
            result.intent.value,
            result.confidence,
            result.reasoning,
        )
        return result

    async def _escalate(self, prompt: str, existing_paths: list[str]) -> ClassificationResult:
        try:
            raw = await self._backend.classify(prompt, existing_paths)
            return _parse_backend_result(raw)
        except Exception as exc:
            logger.warning("Classification escalation failed, using fallback: %s", exc)
            return ClassificationResult(
                intent=FALLBACK_INTENT,
                confidence=FALLBACK_CONFIDENCE,
                should_create_new_version=True,
                entities=[],
                reasoning="Fallback classification due to error",
            )


def _parse_backend_result(raw: dict[str, Any]) -> ClassificationResult:
    """Validate backend output. Raises ClassificationFailure when unusable."""
    if not isinstance(raw, dict):
        raise ClassificationFailure(f"Expected an object, got {type(raw).__name__}")
    try:
        intent = CommandType(str(raw["command_type"]).upper())
    except (KeyError, ValueError) as exc:
        raise ClassificationFailure(f"Unknown command_type: {raw.get('command_type')!r}") from exc

    try:
        confidence = int(round(float(raw.get("confidence", FALLBACK_CONFIDENCE))))
    except (TypeError, ValueError):
        confidence = FALLBACK_CONFIDENCE

    entities = raw.get("entities") or []
    return ClassificationResult(
        intent=intent,
        confidence=max(0, min(100, confidence)),
        should_create_new_version=bool(raw.get("should_create_new_version", True)),
        entities=[str(e) for e in entities] if isinstance(entities, list) else [],
        reasoning=str(raw.get("reasoning") or "AI classification"),
    )
