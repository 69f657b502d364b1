"""Domain models for the iterforge database layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum


class VersionStatus(str, Enum):
    GENERATING = "generating"
    COMPLETE = "complete"
    FAILED = "failed"


# generating -> complete | failed; nothing leaves a finished state.
ALLOWED_STATUS_TRANSITIONS: dict[VersionStatus, frozenset[VersionStatus]] = {
    VersionStatus.GENERATING: frozenset({VersionStatus.COMPLETE, VersionStatus.FAILED}),
    VersionStatus.COMPLETE: frozenset(),
    VersionStatus.FAILED: frozenset(),
}


@dataclass
class Project:
    id: str
    name: str
    is_foreign: bool = False
    created_at: str | None = None


@dataclass
class Version:
    """One immutable, complete snapshot of a project's files.

    ``files`` always holds the full path → content mapping, never a diff, so
    any version can be materialized without consulting its ancestors.
    """

    id: str
    project_id: str
    version_number: int
    name: str
    prompt: str
    files: dict[str, str] = field(default_factory=dict)
    description: str | None = None
    command_type: str | None = None
    parent_version_id: str | None = None
    status: VersionStatus = VersionStatus.GENERATING
    metadata: dict = field(default_factory=dict)
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Message:
    project_id: str
    role: str
    content: str
    created_at: str | None = None
    id: int | None = None  # set after insert


@dataclass
class FileEmbedding:
    project_id: str
    version_id: str
    file_path: str
    content_hash: str
    embedding_model: str
    embedding: list[float]
    file_type: str = "other"
    language: str = ""
    imports: list[str] = field(default_factory=list)

    @property
    def embedding_json(self) -> str:
        return json.dumps(self.embedding)
