"""Execution targets: where a committed snapshot's changes are applied.

A target accepts a write set plus deletions and a restart signal, and reports
readiness through a HealthResult. The directory target writes files under a
workspace root:
  - every path is confined to the root; traversal ('../../etc/passwd') is a
    hard fail for the whole batch, checked before anything is written;
  - files are written atomically (temp file → rename) on a worker thread;
  - on restart, an optional command runs in the root and its exit code decides
    health.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from iterforge.errors import ApplyFailure

logger = logging.getLogger(__name__)


@dataclass
class HealthResult:
    healthy: bool
    detail: str = ""


class ExecutionTarget(Protocol):
    async def apply(
        self, writes: dict[str, str], deletions: list[str], restart: bool = True
    ) -> HealthResult: ...

    async def health(self) -> HealthResult: ...


# ------------------------------------------------------------------
# Path validation (path traversal prevention)
# ------------------------------------------------------------------


def validate_target_path(relative: str, root: Path) -> Path:
    """Resolve *relative* under *root*.

    Raises:
        ValueError: If the path is absolute or resolves outside *root*.
    """
    path = Path(relative)
    if path.is_absolute():
        raise ValueError(f"Target path '{relative}' must be relative to the workspace.")

    root = root.resolve()
    resolved = (root / path).resolve()
    try:
        resolved.relative_to(root)
    except ValueError:
        raise ValueError(
            f"Target path '{relative}' resolves outside the workspace "
            f"('{root}'). Path traversal is not permitted."
        )
    if resolved == root:
        raise ValueError(f"Target path '{relative}' names the workspace itself.")
    return resolved


# ------------------------------------------------------------------
# Atomic write
# ------------------------------------------------------------------


def write_file(path: Path, content: str) -> None:
    """Write *content* to *path* atomically (temp → rename).

    Creates parent directories if needed.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_path, path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class DirectoryTarget:
    """A local directory as the live execution target."""

    def __init__(self, root: Path, *, restart_command: list[str] | None = None) -> None:
        self.root = Path(root)
        self.restart_command = restart_command

    async def apply(
        self, writes: dict[str, str], deletions: list[str], restart: bool = True
    ) -> HealthResult:
        """Write and delete files, then restart and report health.

        Raises:
            ApplyFailure: On an unsafe path or any filesystem error.
        """
        try:
            await asyncio.to_thread(self._write_batch, writes, deletions)
        except (OSError, ValueError) as exc:
            raise ApplyFailure(f"Could not apply changes to {self.root}: {exc}") from exc

        logger.info(
            "Applied %d write(s) and %d deletion(s) to %s",
            len(writes),
            len(deletions),
            self.root,
        )
        if restart and self.restart_command:
            return await self._restart()
        return await self.health()

    def _write_batch(self, writes: dict[str, str], deletions: list[str]) -> None:
        # Every path is validated before the first write or delete.
        self.root.mkdir(parents=True, exist_ok=True)
        resolved_writes = {validate_target_path(p, self.root): c for p, c in writes.items()}
        resolved_deletes = [validate_target_path(p, self.root) for p in deletions]

        for path in resolved_deletes:
            path.unlink(missing_ok=True)
        for path, content in resolved_writes.items():
            write_file(path, content)

    async def health(self) -> HealthResult:
        if not self.root.is_dir():
            return HealthResult(False, f"Workspace {self.root} does not exist")
        if not os.access(self.root, os.W_OK):
            return HealthResult(False, f"Workspace {self.root} is not writable")
        return HealthResult(True, "ready")

    async def _restart(self) -> HealthResult:
        command = self.restart_command or []
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=self.root,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
            output, _ = await process.communicate()
        except OSError as exc:
            raise ApplyFailure(f"Restart command failed to start: {exc}") from exc

        text = output.decode("utf-8", errors="replace").strip()
        if process.returncode != 0:
            return HealthResult(False, f"Restart exited with {process.returncode}: {text[-500:]}")
        return HealthResult(True, text[-500:] or "restarted")


# ------------------------------------------------------------------
# Importing a directory as a snapshot
# ------------------------------------------------------------------

_IMPORT_SKIP_DIRS: frozenset[str] = frozenset(
    [".git", "node_modules", ".next", "dist", "build", "__pycache__", ".venv"]
)
MAX_IMPORT_FILE_BYTES = 1_000_000


def read_snapshot(root: Path) -> dict[str, str]:
    """Read every UTF-8 text file under *root* as a path → content snapshot.

    Paths are POSIX-style and relative to *root*. Vendored and build
    directories, binary files and files over 1 MB are skipped.
    """
    root = Path(root)
    snapshot: dict[str, str] = {}
    for path in sorted(root.rglob("*")):
        relative = path.relative_to(root)
        if any(part in _IMPORT_SKIP_DIRS for part in relative.parts):
            continue
        if not path.is_file() or path.stat().st_size > MAX_IMPORT_FILE_BYTES:
            continue
        if path.name.startswith(".iterforge.db"):
            continue
        try:
            snapshot[relative.as_posix()] = path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            logger.debug("Skipping binary file %s", relative)
    return snapshot
