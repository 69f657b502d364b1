"""Character budget: split one total into weighted pools and fill each greedily.

Pools (of a 400,000-char total by default):
  conversation 20% | config 10% | relevant 40% | dependencies 20% | margin 10%

Rules:
  - conversation keeps the newest messages, dropping the oldest first;
  - config and dependency pools fill in encountered order and stop at the
    first file that does not fit;
  - the relevant pool is sorted by relevance (descending) and then filled the
    same way;
  - a file is cut down to the pool only when the pool would otherwise be empty,
    so the highest-value file always survives. The truncation marker is the
    only allowed overflow.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace

from iterforge.rag.models import RelevantFile

DEFAULT_CHAR_BUDGET = 400_000
TRUNCATION_MARKER = "\n\n[... truncated ...]"


@dataclass(frozen=True)
class BudgetAllocation:
    total_chars: int = DEFAULT_CHAR_BUDGET
    conversation_share: float = 0.20
    config_share: float = 0.10
    relevant_share: float = 0.40
    dependency_share: float = 0.20

    def __post_init__(self) -> None:
        shares = (
            self.conversation_share,
            self.config_share,
            self.relevant_share,
            self.dependency_share,
        )
        if any(s < 0 for s in shares) or sum(shares) > 1.0 + 1e-9:
            raise ValueError("Budget shares must be non-negative and sum to <= 1.0")
        if self.total_chars < 0:
            raise ValueError(f"total_chars must be >= 0, got {self.total_chars}")

    @property
    def conversation(self) -> int:
        return int(self.total_chars * self.conversation_share)

    @property
    def config(self) -> int:
        return int(self.total_chars * self.config_share)

    @property
    def relevant(self) -> int:
        return int(self.total_chars * self.relevant_share)

    @property
    def dependencies(self) -> int:
        return int(self.total_chars * self.dependency_share)


def message_size(message: dict[str, str]) -> int:
    return len(json.dumps(message))


def truncate_history(history: list[dict[str, str]], budget: int) -> list[dict[str, str]]:
    """Keep the newest messages that fit, returned oldest → newest."""
    kept: list[dict[str, str]] = []
    used = 0
    for message in reversed(history):
        size = message_size(message)
        if used + size > budget:
            break
        kept.append(message)
        used += size
    kept.reverse()
    return kept


def _cut(content: str, budget: int) -> str:
    return content[: max(0, budget)] + TRUNCATION_MARKER


def truncate_files(files: dict[str, str], budget: int) -> dict[str, str]:
    """Greedy fill in encountered order."""
    result: dict[str, str] = {}
    used = 0
    for path, content in files.items():
        size = len(content)
        if used + size <= budget:
            result[path] = content
            used += size
            continue
        if not result:
            result[path] = _cut(content, budget)
        break
    return result


def truncate_relevant_files(
    files: dict[str, RelevantFile], budget: int
) -> dict[str, RelevantFile]:
    """Greedy fill by descending relevance (stable for equal scores)."""
    ordered = sorted(files.items(), key=lambda item: item[1].relevance, reverse=True)
    result: dict[str, RelevantFile] = {}
    used = 0
    for path, data in ordered:
        size = len(data.content)
        if used + size <= budget:
            result[path] = data
            used += size
            continue
        if not result:
            result[path] = replace(data, content=_cut(data.content, budget))
        break
    return result


def pool_size(files: dict[str, str] | dict[str, RelevantFile]) -> int:
    total = 0
    for value in files.values():
        total += len(value.content if isinstance(value, RelevantFile) else value)
    return total
