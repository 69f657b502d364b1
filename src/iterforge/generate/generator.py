"""Generation collaborator: one LLM call that proposes file changes.

The response is streamed as JSON (response_format=json_object). If streaming
fails the call is retried once without streaming. The outermost ``{...}`` in the
output is parsed; anything unparseable is a GenerationFailure.
"""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from iterforge.errors import GenerationFailure
from iterforge.generate.templates import build_prompt
from iterforge.rag.llm_client import acomplete, astream
from iterforge.rag.models import RetrievalContext

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, str], None]

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_PROGRESS_EVERY = 5  # chunks


@dataclass
class GenerationRequest:
    prompt: str
    context: RetrievalContext
    answer_mode: bool = False
    strict: bool = False


@dataclass
class GenerationOutput:
    modified_files: dict[str, str] = field(default_factory=dict)
    new_files: dict[str, str] = field(default_factory=dict)
    deleted_files: list[str] = field(default_factory=list)
    changes: list[str] = field(default_factory=list)
    description: str = ""
    answer: str | None = None
    warnings: list[str] = field(default_factory=list)


class Generator(Protocol):
    async def generate(
        self, request: GenerationRequest, on_progress: ProgressCallback | None = None
    ) -> GenerationOutput: ...


def parse_generation_output(raw: str, *, answer_mode: bool = False) -> GenerationOutput:
    """Parse model output into a GenerationOutput.

    Raises:
        GenerationFailure: No JSON object, invalid JSON, or fields of the
            wrong shape.
    """
    match = _JSON_OBJECT.search(raw)
    if match is None:
        raise GenerationFailure("Model output contains no JSON object")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise GenerationFailure(f"Model output is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise GenerationFailure("Model output must be a JSON object")

    description = str(data.get("description") or "")
    if answer_mode:
        answer = data.get("answer")
        if not isinstance(answer, str) or not answer.strip():
            raise GenerationFailure("Answer-mode output is missing 'answer'")
        return GenerationOutput(answer=answer, description=description)

    return GenerationOutput(
        modified_files=_file_map(data, "modifiedFiles"),
        new_files=_file_map(data, "newFiles"),
        deleted_files=_path_list(data, "deletedFiles"),
        changes=[str(c) for c in _list(data, "changes")],
        description=description,
    )


def _file_map(data: dict[str, Any], key: str) -> dict[str, str]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise GenerationFailure(f"'{key}' must be an object of path → content")
    for path, content in value.items():
        if not isinstance(content, str):
            raise GenerationFailure(f"'{key}[{path}]' must be a string")
    return dict(value)


def _list(data: dict[str, Any], key: str) -> list[Any]:
    value = data.get(key) or []
    if not isinstance(value, list):
        raise GenerationFailure(f"'{key}' must be a list")
    return value


def _path_list(data: dict[str, Any], key: str) -> list[str]:
    paths = _list(data, key)
    if not all(isinstance(p, str) for p in paths):
        raise GenerationFailure(f"'{key}' must be a list of paths")
    return list(dict.fromkeys(paths))


class LLMGenerator:
    """LiteLLM-backed generator with streaming and a non-streaming retry."""

    def __init__(
        self,
        model: str = "openai/gpt-4o",
        *,
        temperature: float = 0.7,
        max_tokens: int = 16_384,
        num_retries: int = 3,
        timeout: float | None = None,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.num_retries = num_retries
        self.timeout = timeout

    async def generate(
        self, request: GenerationRequest, on_progress: ProgressCallback | None = None
    ) -> GenerationOutput:
        components = build_prompt(
            request.prompt,
            request.context,
            self.model,
            answer_mode=request.answer_mode,
            strict=request.strict,
        )
        messages = [
            {"role": "system", "content": components.system_prompt},
            {"role": "user", "content": components.user_message},
        ]
        progress = on_progress or (lambda stage, detail: None)

        try:
            raw = await self._stream(messages, progress)
        except Exception as exc:
            logger.warning("Streaming generation failed, retrying without streaming: %s", exc)
            progress("Retrying", f"Streaming failed: {exc}")
            try:
                raw = await acomplete(
                    self.model,
                    messages,
                    max_tokens=self.max_tokens,
                    temperature=self.temperature,
                    num_retries=self.num_retries,
                    timeout=self.timeout,
                    json_mode=True,
                )
            except Exception as retry_exc:
                raise GenerationFailure(f"Generation call failed: {retry_exc}") from retry_exc
            progress("Complete", "Generated response (non-streaming)")

        output = parse_generation_output(raw, answer_mode=request.answer_mode)
        if components.budget_warning:
            output.warnings.append(components.budget_warning)
        return output

    async def _stream(self, messages: list[dict], progress: ProgressCallback) -> str:
        started = time.monotonic()
        parts: list[str] = []
        progress("Streaming", "Response started")
        async for delta in astream(
            self.model,
            messages,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            num_retries=self.num_retries,
            timeout=self.timeout,
            json_mode=True,
        ):
            parts.append(delta)
            if len(parts) % _PROGRESS_EVERY == 0:
                elapsed = time.monotonic() - started
                progress("Generating", f"{elapsed:.1f}s, {len(parts)} chunks")
        raw = "".join(parts)
        progress("Complete", f"Generated {len(raw)} characters in {time.monotonic() - started:.1f}s")
        return raw
