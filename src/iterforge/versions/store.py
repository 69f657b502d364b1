"""Version Store: append-only history of complete per-project file snapshots.

Invariants:
  - version_number is unique per project (UNIQUE constraint; a conflict is a
    PersistenceFailure, never a silent overwrite).
  - files is always a complete snapshot.
  - status only moves generating -> complete or generating -> failed.

Write failures surface to the caller. Read failures on "latest" and "next
number" degrade to None / 1 so generation for a fresh project is never blocked.

The methods are async to match the other pipeline collaborators, but the
sqlite calls underneath are synchronous and run on the event loop thread.
A sqlite3 connection is bound to the thread that opened it, so the calls are
not moved to a worker thread.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from typing import Any

from iterforge.db.models import (
    ALLOWED_STATUS_TRANSITIONS,
    Project,
    Version,
    VersionStatus,
)
from iterforge.db.repository import UPDATABLE_VERSION_COLUMNS, Repository
from iterforge.errors import (
    PersistenceFailure,
    ValidationError,
    VersionNotFound,
    VersionStateError,
)

logger = logging.getLogger(__name__)


@dataclass
class FileDiff:
    filename: str
    status: str  # added | modified | deleted | unchanged
    old_content: str | None = None
    new_content: str | None = None


@dataclass
class ComparisonSummary:
    files_added: int = 0
    files_modified: int = 0
    files_deleted: int = 0
    files_unchanged: int = 0


@dataclass
class VersionComparison:
    version1: Version
    version2: Version
    diffs: list[FileDiff] = field(default_factory=list)
    summary: ComparisonSummary = field(default_factory=ComparisonSummary)


class VersionStore:
    """Async facade over the sqlite Repository for projects and versions."""

    def __init__(self, repo: Repository) -> None:
        self._repo = repo

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    async def create_project(
        self, name: str, *, is_foreign: bool = False, project_id: str | None = None
    ) -> Project:
        if not name.strip():
            raise ValidationError("Project name must not be empty.")
        project = Project(id=project_id or uuid.uuid4().hex, name=name, is_foreign=is_foreign)
        try:
            self._repo.add_project(project)
        except sqlite3.Error as exc:
            raise PersistenceFailure(f"Failed to create project: {exc}") from exc
        return self._repo.get_project(project.id) or project

    async def get_project(self, project_id: str) -> Project | None:
        return self._repo.get_project(project_id)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_version(
        self,
        project_id: str,
        version_number: int,
        prompt: str,
        files: dict[str, str],
        *,
        name: str | None = None,
        description: str | None = None,
        command_type: str | None = None,
        parent_version_id: str | None = None,
        status: VersionStatus = VersionStatus.GENERATING,
        metadata: dict[str, Any] | None = None,
    ) -> Version:
        """Insert a new version and return it as stored.

        Raises:
            ValidationError: On an empty prompt or a non-positive number.
            PersistenceFailure: On a version_number conflict or any write error.
        """
        if not prompt.strip():
            raise ValidationError("Version prompt must not be empty.")
        if version_number < 1:
            raise ValidationError(f"version_number must be >= 1, got {version_number}")

        version = Version(
            id=uuid.uuid4().hex,
            project_id=project_id,
            version_number=version_number,
            name=name or f"Version {version_number}",
            prompt=prompt,
            files=dict(files),
            description=description,
            command_type=command_type,
            parent_version_id=parent_version_id,
            status=VersionStatus(status),
            metadata=dict(metadata or {}),
        )
        try:
            self._repo.add_version(version)
        except sqlite3.IntegrityError as exc:
            raise PersistenceFailure(
                f"Failed to create version {version_number} for project "
                f"{project_id}: {exc}"
            ) from exc
        except sqlite3.Error as exc:
            raise PersistenceFailure(f"Failed to create version: {exc}") from exc

        logger.info(
            "Created version %d (%s) for project %s", version_number, version.id, project_id
        )
        return self._repo.get_version(version.id) or version

    async def update_version(self, version_id: str, **changes: Any) -> Version:
        """Apply *changes* to a generating version.

        Raises:
            ValidationError: If *changes* names a field fixed at creation.
            VersionNotFound: If no such version exists.
            VersionStateError: If the version is already complete/failed, or the
                requested status transition is not allowed.
            PersistenceFailure: On a write error.
        """
        fixed = sorted(set(changes) - UPDATABLE_VERSION_COLUMNS)
        if fixed:
            raise ValidationError(
                f"Cannot update version field(s) {', '.join(fixed)}; only "
                f"{', '.join(sorted(UPDATABLE_VERSION_COLUMNS))} may change."
            )
        current = await self.get_version(version_id)
        if current.status != VersionStatus.GENERATING:
            raise VersionStateError(
                f"Version {version_id} is {current.status.value} and can no longer change."
            )
        if "status" in changes:
            target = VersionStatus(changes["status"])
            if target != current.status and target not in ALLOWED_STATUS_TRANSITIONS[current.status]:
                raise VersionStateError(
                    f"Illegal status transition {current.status.value} -> {target.value}"
                )
            changes["status"] = target

        try:
            self._repo.update_version(version_id, changes)
        except sqlite3.Error as exc:
            raise PersistenceFailure(f"Failed to update version {version_id}: {exc}") from exc
        return await self.get_version(version_id)

    async def mark_complete(self, version_id: str, **changes: Any) -> Version:
        return await self.update_version(version_id, status=VersionStatus.COMPLETE, **changes)

    async def mark_failed(self, version_id: str, **changes: Any) -> Version:
        return await self.update_version(version_id, status=VersionStatus.FAILED, **changes)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_version(self, version_id: str) -> Version:
        version = self._repo.get_version(version_id)
        if version is None:
            raise VersionNotFound(f"Version not found: {version_id}")
        return version

    async def get_latest_version(self, project_id: str) -> Version | None:
        """Highest-numbered complete version, or None (also on read errors)."""
        try:
            return self._repo.get_latest_complete_version(project_id)
        except sqlite3.Error as exc:
            logger.warning("Error fetching latest version for %s: %s", project_id, exc)
            return None

    async def get_next_version_number(self, project_id: str) -> int:
        """max(version_number) + 1 over every status, or 1 (also on read errors)."""
        try:
            current = self._repo.max_version_number(project_id)
        except sqlite3.Error as exc:
            logger.warning("Error fetching version number for %s: %s", project_id, exc)
            return 1
        return (current or 0) + 1

    async def list_versions(
        self, project_id: str, limit: int = 50, offset: int = 0
    ) -> list[Version]:
        return self._repo.list_versions(project_id, limit=limit, offset=offset)

    async def count_versions(self, project_id: str) -> int:
        try:
            return self._repo.count_versions(project_id)
        except sqlite3.Error as exc:
            logger.warning("Error counting versions for %s: %s", project_id, exc)
            return 0

    async def get_version_history(self, version_id: str) -> list[Version]:
        """Follow parent_version_id to the root. Returns oldest -> newest."""
        history: list[Version] = []
        seen: set[str] = set()
        current_id: str | None = version_id
        while current_id and current_id not in seen:
            seen.add(current_id)
            version = await self.get_version(current_id)
            history.append(version)
            current_id = version.parent_version_id
        history.reverse()
        return history


def compare_versions(version1: Version, version2: Version) -> VersionComparison:
    """Per-path diff of two snapshots by content equality (display only)."""
    files1 = version1.files or {}
    files2 = version2.files or {}
    comparison = VersionComparison(version1=version1, version2=version2)
    summary = comparison.summary

    for filename in sorted(set(files1) | set(files2)):
        in1, in2 = filename in files1, filename in files2
        old, new = files1.get(filename), files2.get(filename)
        if not in1:
            comparison.diffs.append(FileDiff(filename, "added", new_content=new))
            summary.files_added += 1
        elif not in2:
            comparison.diffs.append(FileDiff(filename, "deleted", old_content=old))
            summary.files_deleted += 1
        elif old != new:
            comparison.diffs.append(FileDiff(filename, "modified", old, new))
            summary.files_modified += 1
        else:
            comparison.diffs.append(FileDiff(filename, "unchanged", old, new))
            summary.files_unchanged += 1

    return comparison
