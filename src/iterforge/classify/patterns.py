"""Intent pattern tables for the keyword classifier.

These are data, not a parser: an intentionally approximate first pass. Families
are tried in table order and the first family with any matching pattern wins.
Extend a family by appending a pattern; no classifier code needs to change.
"""

from __future__ import annotations

import re
from enum import Enum


class CommandType(str, Enum):
    CREATE_FILE = "CREATE_FILE"
    MODIFY_FILE = "MODIFY_FILE"
    DELETE_FILE = "DELETE_FILE"
    REFACTOR_CODE = "REFACTOR_CODE"
    GENERATE_API = "GENERATE_API"
    ANSWER_QUESTION = "ANSWER_QUESTION"


KEYWORD_CONFIDENCE = 85

_I = re.IGNORECASE

PATTERN_TABLE: list[tuple[CommandType, tuple[re.Pattern[str], ...]]] = [
    (
        CommandType.CREATE_FILE,
        (
            re.compile(
                r"\b(create|add|new|generate|make|build)\s+(a\s+)?(new\s+)?"
                r"(file|component|module|endpoint|route|api|service|handler|controller|middleware)\b",
                _I,
            ),
            re.compile(r"\b(scaffold|setup|initialize|implement)\s+(a\s+)?new\b", _I),
        ),
    ),
    (
        CommandType.MODIFY_FILE,
        (
            re.compile(
                r"\b(modify|update|change|edit|alter|adjust|fix|improve|enhance|refactor)\s+"
                r"(the\s+)?(existing\s+)?(file|code|function|method|class|component)\b",
                _I,
            ),
            re.compile(r"\b(add|include|insert)\s+(to|in|into)\s+(the\s+)?(existing|current)\b", _I),
            re.compile(r"\b(remove|delete)\s+(from|in)\s+(the\s+)?(existing|current)\b", _I),
        ),
    ),
    (
        CommandType.DELETE_FILE,
        (
            re.compile(r"\b(delete|remove|drop)\s+(the\s+)?(file|component|module|endpoint|route)\b", _I),
            re.compile(r"\b(get\s+rid\s+of|eliminate|erase)\s+(the\s+)?(file|component)\b", _I),
        ),
    ),
    (
        CommandType.REFACTOR_CODE,
        (
            re.compile(r"\b(refactor|restructure|reorganize|optimize|clean\s*up|rewrite)\b", _I),
            re.compile(r"\b(improve|enhance)\s+(the\s+)?(code|structure|architecture|organization)\b", _I),
            re.compile(r"\b(convert|migrate|transform)\s+.+\s+(to|into)\b", _I),
        ),
    ),
    (
        CommandType.GENERATE_API,
        (
            re.compile(
                r"\b(create|generate|build|make)\s+(an\s+|a\s+)?(api|rest\s*api|graphql|endpoint|backend|server)\b",
                _I,
            ),
            re.compile(r"\b(api|rest\s*api)\s+for\b", _I),
            re.compile(r"\bi\s+need\s+(an\s+|a\s+)?(api|backend)\b", _I),
        ),
    ),
    (
        CommandType.ANSWER_QUESTION,
        (
            re.compile(r"^(what|why|how|where|which|who|when)\b.*\?$", _I),
            re.compile(r"^(can|could)\s+you\s+(explain|tell\s+me|describe)\b", _I),
            re.compile(r"^explain\b", _I),
        ),
    ),
]

# Entity extraction: dotted filename-like tokens and quoted substrings.
FILENAME_PATTERN = re.compile(r"\b[\w-]+\.\w+\b")
QUOTED_PATTERN = re.compile(r"[\"']([^\"']+)[\"']")


def match_intent(normalized_prompt: str) -> CommandType | None:
    """Return the first family whose patterns match, or None."""
    for intent, patterns in PATTERN_TABLE:
        if any(p.search(normalized_prompt) for p in patterns):
            return intent
    return None


def extract_entities(prompt: str) -> list[str]:
    """Filenames first, then quoted strings; de-duplicated, order kept."""
    entities = FILENAME_PATTERN.findall(prompt)
    entities.extend(QUOTED_PATTERN.findall(prompt))
    return list(dict.fromkeys(entities))
