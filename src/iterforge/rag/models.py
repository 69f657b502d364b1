"""Data carried through retrieval: options, hits, and the built context."""

from __future__ import annotations

from dataclasses import dataclass, field

from iterforge.db.models import Version


@dataclass
class ContextOptions:
    """Per-request retrieval options.

    Attributes:
        message_limit: Conversation turns to fetch.
        max_files: Cap for semantic hits and content-search results.
        include_tests: When False, semantic search is limited to
            component/utility/api/config files.
        is_foreign_project: Project was imported from an existing codebase.
    """

    message_limit: int = 20
    max_files: int = 15
    include_tests: bool = False
    is_foreign_project: bool = False


@dataclass
class SearchHit:
    file_path: str
    similarity: float
    file_type: str = "other"
    imports: list[str] = field(default_factory=list)


@dataclass
class RelevantFile:
    content: str
    relevance: float
    reason: str


@dataclass
class ContextStats:
    project_files: int = 0      # files in the previous snapshot
    total_files: int = 0        # relevant + dependency + config after truncation
    selected_files: int = 0     # relevant files after truncation
    estimated_chars: int = 0
    estimated_tokens: int = 0
    search_ms: float = 0.0


@dataclass
class RetrievalContext:
    project_id: str
    conversation: list[dict[str, str]] = field(default_factory=list)
    relevant_files: dict[str, RelevantFile] = field(default_factory=dict)
    dependency_files: dict[str, str] = field(default_factory=dict)
    config_files: dict[str, str] = field(default_factory=dict)
    previous_files: dict[str, str] = field(default_factory=dict)
    previous_version: Version | None = None
    summary: str = ""
    stats: ContextStats = field(default_factory=ContextStats)
    warnings: list[str] = field(default_factory=list)  # degraded steps

    @property
    def is_fresh_project(self) -> bool:
        return self.previous_version is None
