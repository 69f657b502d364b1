"""Tests for the hybrid command classifier."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest

from fakes import FakeClassificationBackend
from iterforge.classify.cache import FIFOCache
from iterforge.classify.classifier import (
    FALLBACK_CONFIDENCE,
    CommandClassifier,
    LLMClassificationBackend,
)
from iterforge.classify.patterns import CommandType
from iterforge.errors import ValidationError


def _classify(classifier, prompt, paths=None):
    return asyncio.run(classifier.classify(prompt, paths or []))


# ------------------------------------------------------------------
# Keyword path
# ------------------------------------------------------------------

def test_keyword_match_skips_backend():
    backend = FakeClassificationBackend()
    result = _classify(CommandClassifier(backend), "create a new file called stats-widget.tsx")
    assert result.intent == CommandType.CREATE_FILE
    assert result.confidence == 85
    assert result.entities == ["stats-widget.tsx"]
    assert backend.calls == []


def test_answer_question_does_not_create_version():
    result = _classify(CommandClassifier(FakeClassificationBackend()), "what does this do?")
    assert result.intent == CommandType.ANSWER_QUESTION
    assert result.should_create_new_version is False


def test_threshold_above_keyword_confidence_escalates():
    backend = FakeClassificationBackend()
    classifier = CommandClassifier(backend, confidence_threshold=90)
    result = _classify(classifier, "delete the file old.ts")
    assert len(backend.calls) == 1
    assert result.intent == CommandType.MODIFY_FILE


# ------------------------------------------------------------------
# Escalation
# ------------------------------------------------------------------

def test_unmatched_prompt_escalates_once():
    backend = FakeClassificationBackend(
        {
            "command_type": "refactor_code",
            "confidence": 72.6,
            "should_create_new_version": True,
            "entities": ["Header.tsx"],
            "reasoning": "restructuring",
        }
    )
    result = _classify(CommandClassifier(backend), "make the header pop", ["src/Header.tsx"])
    assert backend.calls == [("make the header pop", ["src/Header.tsx"])]
    assert result.intent == CommandType.REFACTOR_CODE
    assert result.confidence == 73
    assert result.entities == ["Header.tsx"]


def test_backend_error_falls_back():
    backend = FakeClassificationBackend(error=RuntimeError("timeout"))
    result = _classify(CommandClassifier(backend), "make the header pop")
    assert result.intent == CommandType.GENERATE_API
    assert result.confidence == FALLBACK_CONFIDENCE
    assert result.is_fallback


def test_unknown_command_type_falls_back():
    backend = FakeClassificationBackend({"command_type": "DANCE", "confidence": 99})
    result = _classify(CommandClassifier(backend), "make the header pop")
    assert result.is_fallback


def test_confidence_is_clamped():
    backend = FakeClassificationBackend({"command_type": "MODIFY_FILE", "confidence": 400})
    assert _classify(CommandClassifier(backend), "make the header pop").confidence == 100


# ------------------------------------------------------------------
# Cache
# ------------------------------------------------------------------

def test_cache_hit_uses_normalized_prompt():
    backend = FakeClassificationBackend()
    classifier = CommandClassifier(backend)
    first = _classify(classifier, "Make the header pop")
    second = _classify(classifier, "  make the HEADER pop ")
    assert first is second
    assert len(backend.calls) == 1


def test_injected_cache_controls_eviction():
    backend = FakeClassificationBackend()
    classifier = CommandClassifier(backend, FIFOCache(1))
    _classify(classifier, "make the header pop")
    _classify(classifier, "make the footer pop")
    _classify(classifier, "make the header pop")
    assert len(backend.calls) == 3


def test_fallback_results_are_cached():
    backend = FakeClassificationBackend(error=RuntimeError("down"))
    classifier = CommandClassifier(backend)
    _classify(classifier, "make the header pop")
    _classify(classifier, "make the header pop")
    assert len(backend.calls) == 1


@pytest.mark.parametrize("prompt", ["", "   "])
def test_empty_prompt_raises(prompt):
    with pytest.raises(ValidationError):
        _classify(CommandClassifier(FakeClassificationBackend()), prompt)


# ------------------------------------------------------------------
# LLM backend
# ------------------------------------------------------------------

def test_llm_backend_forces_tool_call_and_lists_files():
    payload = {"command_type": "MODIFY_FILE", "confidence": 90}
    with patch(
        "iterforge.classify.classifier.acall_tool",
        new=AsyncMock(return_value=json.dumps(payload)),
    ) as mock_tool:
        backend = LLMClassificationBackend("openai/gpt-4o-mini", max_listed_files=1)
        result = asyncio.run(backend.classify("tweak it", ["a.ts", "b.ts"]))

    assert result == payload
    model, messages, tool = mock_tool.call_args.args
    assert model == "openai/gpt-4o-mini"
    assert tool["name"] == "classify_command"
    assert "a.ts" in messages[0]["content"]
    assert "b.ts" not in messages[0]["content"]


def test_llm_backend_new_project_listing():
    with patch(
        "iterforge.classify.classifier.acall_tool",
        new=AsyncMock(return_value="{}"),
    ) as mock_tool:
        asyncio.run(LLMClassificationBackend().classify("tweak it", []))
    messages = mock_tool.call_args.args[1]
    assert "none (new project)" in messages[0]["content"]
