"""Tests for generation output parsing and the LiteLLM generator."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest

from iterforge.errors import GenerationFailure
from iterforge.generate.generator import (
    GenerationRequest,
    LLMGenerator,
    parse_generation_output,
)
from iterforge.rag.models import RetrievalContext

_PAYLOAD = {
    "modifiedFiles": {"src/a.ts": "a2"},
    "newFiles": {"src/b.ts": "b"},
    "deletedFiles": ["src/c.ts", "src/c.ts"],
    "changes": ["edit a", "add b"],
    "description": "Edited a and added b",
}


def _stream(*parts, error=None):
    async def gen(*args, **kwargs):
        for part in parts:
            yield part
        if error is not None:
            raise error

    return gen


def _request(answer_mode=False):
    return GenerationRequest(
        prompt="do it", context=RetrievalContext(project_id="p1"), answer_mode=answer_mode
    )


# ------------------------------------------------------------------
# parse_generation_output
# ------------------------------------------------------------------


def test_parse_code_output():
    output = parse_generation_output(json.dumps(_PAYLOAD))
    assert output.modified_files == {"src/a.ts": "a2"}
    assert output.new_files == {"src/b.ts": "b"}
    assert output.deleted_files == ["src/c.ts"]
    assert output.changes == ["edit a", "add b"]
    assert output.description == "Edited a and added b"
    assert output.answer is None


def test_parse_extracts_outermost_object_from_prose():
    raw = "Sure! Here you go:\n```json\n" + json.dumps(_PAYLOAD) + "\n```"
    assert parse_generation_output(raw).new_files == {"src/b.ts": "b"}


def test_parse_missing_keys_default_to_empty():
    output = parse_generation_output('{"description": "noop"}')
    assert output.modified_files == {}
    assert output.new_files == {}
    assert output.deleted_files == []


def test_parse_answer_mode():
    output = parse_generation_output('{"answer": "It renders the nav.", "description": "Q"}', answer_mode=True)
    assert output.answer == "It renders the nav."
    assert output.modified_files == {}


@pytest.mark.parametrize(
    "raw,answer_mode",
    [
        ("no json here", False),
        ("{not: valid}", False),
        ('{"modifiedFiles": ["a.ts"]}', False),
        ('{"newFiles": {"a.ts": 3}}', False),
        ('{"deletedFiles": "a.ts"}', False),
        ('{"deletedFiles": [1]}', False),
        ('{"description": "no answer"}', True),
    ],
)
def test_parse_rejects_malformed_output(raw, answer_mode):
    with pytest.raises(GenerationFailure):
        parse_generation_output(raw, answer_mode=answer_mode)


# ------------------------------------------------------------------
# LLMGenerator
# ------------------------------------------------------------------


def test_generate_streams_and_reports_progress():
    raw = json.dumps(_PAYLOAD)
    parts = [raw[i : i + 10] for i in range(0, len(raw), 10)]
    events = []
    with patch("iterforge.generate.generator.astream", new=_stream(*parts)), patch(
        "iterforge.generate.generator.acomplete", new=AsyncMock()
    ) as mock_complete, patch(
        "iterforge.generate.templates.get_context_window", return_value=128_000
    ):
        output = asyncio.run(
            LLMGenerator().generate(_request(), lambda stage, detail: events.append(stage))
        )

    assert output.new_files == {"src/b.ts": "b"}
    assert events[0] == "Streaming"
    assert "Generating" in events
    assert events[-1] == "Complete"
    mock_complete.assert_not_awaited()


def test_generate_falls_back_to_non_streaming():
    with patch(
        "iterforge.generate.generator.astream", new=_stream('{"part', error=ConnectionError("reset"))
    ), patch(
        "iterforge.generate.generator.acomplete", new=AsyncMock(return_value=json.dumps(_PAYLOAD))
    ) as mock_complete, patch(
        "iterforge.generate.templates.get_context_window", return_value=128_000
    ):
        output = asyncio.run(LLMGenerator("openai/gpt-4o-mini").generate(_request()))

    assert output.modified_files == {"src/a.ts": "a2"}
    assert mock_complete.await_args.kwargs["json_mode"] is True
    assert mock_complete.await_args.args[0] == "openai/gpt-4o-mini"


def test_generate_raises_when_retry_fails():
    with patch(
        "iterforge.generate.generator.astream", new=_stream(error=ConnectionError("reset"))
    ), patch(
        "iterforge.generate.generator.acomplete", new=AsyncMock(side_effect=TimeoutError("slow"))
    ), patch("iterforge.generate.templates.get_context_window", return_value=128_000):
        with pytest.raises(GenerationFailure, match="slow"):
            asyncio.run(LLMGenerator().generate(_request()))


def test_generate_unparseable_output_raises():
    with patch("iterforge.generate.generator.astream", new=_stream("I cannot help")), patch(
        "iterforge.generate.templates.get_context_window", return_value=128_000
    ):
        with pytest.raises(GenerationFailure):
            asyncio.run(LLMGenerator().generate(_request()))


def test_generate_attaches_budget_warning():
    with patch(
        "iterforge.generate.generator.astream", new=_stream('{"answer": "yes", "description": "d"}')
    ), patch("iterforge.generate.templates.get_context_window", return_value=10):
        output = asyncio.run(LLMGenerator().generate(_request(answer_mode=True)))
    assert output.answer == "yes"
    assert len(output.warnings) == 1
