"""Literal retrieval channels: keyword path matching and content search.

Both work on the previous snapshot alone, so they still run when no semantic
index is available.
"""

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

STOP_WORDS: frozenset[str] = frozenset(
    [
        "the", "a", "an", "in", "on", "at", "to", "for", "of", "and", "or", "but",
        "make", "change", "update", "modify", "add", "create", "delete", "remove",
        "fix", "it", "this", "that", "with", "from", "into",
    ]
)

_TOKEN_SPLIT = re.compile(r"[\s,.:;!?]+")
_QUOTED_TERM = re.compile(r"[\"']([^\"']{10,})[\"']")
_CAPITAL_PHRASE = re.compile(r"[A-Z][A-Z\s]{8,}")

EXACT_MATCH_SCORE = 100
CASE_INSENSITIVE_SCORE = 50


def extract_keywords(prompt: str) -> list[str]:
    """Lowercased prompt tokens longer than two chars, minus stop-words."""
    words = _TOKEN_SPLIT.split(prompt.lower())
    return list(dict.fromkeys(w for w in words if len(w) > 2 and w not in STOP_WORDS))


def find_files_by_keywords(prompt: str, files: dict[str, str]) -> list[str]:
    """Paths whose basename contains a keyword or which have it as a directory segment.

    Returned in snapshot order.
    """
    keywords = extract_keywords(prompt)
    if not keywords:
        return []

    matches: list[str] = []
    for path in files:
        path_lower = path.lower()
        basename = path_lower.rsplit("/", 1)[-1]
        for keyword in keywords:
            if keyword in basename or f"/{keyword}/" in path_lower or path_lower.startswith(f"{keyword}/"):
                matches.append(path)
                logger.debug("Keyword %r matched %s", keyword, path)
                break
    return matches


def extract_search_terms(prompt: str) -> list[str]:
    """Quoted substrings (>= 10 chars) and capitalized phrases (>= 9 chars)."""
    terms = [t for t in _QUOTED_TERM.findall(prompt)]
    terms.extend(p.strip() for p in _CAPITAL_PHRASE.findall(prompt))
    return list(dict.fromkeys(t for t in terms if t))


def search_files_by_content(prompt: str, files: dict[str, str], limit: int = 10) -> list[str]:
    """Rank files by literal occurrences of the prompt's search terms.

    Exact match scores 100 per term, case-insensitive match 50. Ties keep
    snapshot order.
    """
    terms = extract_search_terms(prompt)
    if not terms:
        return []

    scored: list[tuple[str, int]] = []
    for path, content in files.items():
        if not isinstance(content, str):
            continue
        content_lower = content.lower()
        score = 0
        for term in terms:
            if term in content:
                score += EXACT_MATCH_SCORE
            elif term.lower() in content_lower:
                score += CASE_INSENSITIVE_SCORE
        if score > 0:
            scored.append((path, score))

    scored.sort(key=lambda item: item[1], reverse=True)
    return [path for path, _ in scored[:limit]]
