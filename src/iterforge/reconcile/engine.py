"""Reconcile proposed file changes against the previous snapshot.

Generation output is unreliable about file identity: it often proposes a "new"
file that is really a re-cased or re-separated duplicate of an existing one
(``hero-section.tsx`` next to ``HeroSection.tsx``). ``reconcile`` maps the three
proposed sets onto three final sets without mutating its inputs.

Steps:
  1. A "new" path that already exists is a modification.
  2. Alias redirect: a new path whose normalized form names a different existing
     path writes to that path, and the proposed path is queued for deletion.
     A "modified" path that does not exist goes through the same lookup, and
     becomes new when no alias is found.
  3. Strict mode: remaining new files are demoted to modifications unless the
     prompt explicitly asks for a new file.
  4. Deletions are the explicit ones plus alias cleanups. A path that is both
     written and deleted keeps the write.

Several proposals landing on one target: the last one in input order wins
(modified proposals before new proposals), with an advisory naming the rest.
"""

from __future__ import annotations

import logging
import posixpath
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)

EXPLICIT_CREATE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\bcreate\s+(?:a\s+)?new\s+file\b", re.IGNORECASE),
    re.compile(r"\b(?:create|add|make)\s+(?:a\s+|an\s+)?new\s+(?:file|component|page|module|route)\b", re.IGNORECASE),
    re.compile(r"\bnew\s+file\s+(?:called|named)\b", re.IGNORECASE),
)


class ReconcileMode(str, Enum):
    STANDARD = "standard"
    STRICT = "strict"  # imported codebases: no new files unless asked for


@dataclass
class ReconciliationResult:
    modified_files: dict[str, str] = field(default_factory=dict)
    new_files: dict[str, str] = field(default_factory=dict)
    deleted_files: list[str] = field(default_factory=list)
    advisories: list[str] = field(default_factory=list)


# ------------------------------------------------------------------
# Alias resolution
# ------------------------------------------------------------------


def normalize_path(path: str) -> str:
    """Lowercase every segment; strip '-' and '_' from the basename stem only.

    >>> normalize_path("components/Hero-Section.TSX")
    'components/herosection.tsx'
    """
    directory, basename = posixpath.split(path)
    stem, ext = posixpath.splitext(basename)
    stem = stem.lower().replace("-", "").replace("_", "")
    normalized = stem + ext.lower()
    return f"{directory.lower()}/{normalized}" if directory else normalized


def build_alias_index(files: Iterable[str]) -> dict[str, str]:
    """normalized path → actual path. Later paths win on collision."""
    return {normalize_path(path): path for path in files}


def resolve_alias(path: str, alias_index: Mapping[str, str]) -> str | None:
    """The existing path *path* is an alias of, or None."""
    candidate = alias_index.get(normalize_path(path))
    if candidate is None or candidate == path:
        return None
    return candidate


def has_explicit_create(prompt: str) -> bool:
    return any(pattern.search(prompt) for pattern in EXPLICIT_CREATE_PATTERNS)


# ------------------------------------------------------------------
# Reconciliation
# ------------------------------------------------------------------


def reconcile(
    proposed_modified: Mapping[str, str],
    proposed_new: Mapping[str, str],
    proposed_deleted: Iterable[str],
    previous_files: Mapping[str, str],
    mode: ReconcileMode = ReconcileMode.STANDARD,
    prompt: str = "",
) -> ReconciliationResult:
    """Map proposed changes onto final modified/new/deleted sets.

    Args:
        proposed_modified: path → content the generator marked as modified.
        proposed_new: path → content the generator marked as new.
        proposed_deleted: Paths the generator asked to delete.
        previous_files: The snapshot the changes apply to.
        mode: STRICT demotes unrequested new files to modifications.
        prompt: The originating request, checked for explicit creation.

    Returns:
        ReconciliationResult with disjoint output sets.
    """
    alias_index = build_alias_index(previous_files)
    modified: dict[str, str] = {}
    new: dict[str, str] = {}
    cleanup: list[str] = []
    advisories: list[str] = []
    writers: dict[str, list[str]] = {}

    def write_existing(target: str, source: str, content: str) -> None:
        modified[target] = content
        writers.setdefault(target, []).append(source)

    for path, content in proposed_modified.items():
        if path in previous_files:
            write_existing(path, path, content)
            continue
        target = resolve_alias(path, alias_index)
        if target is not None:
            logger.info("Reconciling modified %r -> %r (alias)", path, target)
            write_existing(target, path, content)
            cleanup.append(path)
        else:
            new[path] = content
            advisories.append(
                f"'{path}' was proposed as modified but does not exist; treated as a new file"
            )

    for path, content in proposed_new.items():
        if path in previous_files:
            logger.info("Reconciling new %r: already exists, treating as modification", path)
            write_existing(path, path, content)
            continue
        target = resolve_alias(path, alias_index)
        if target is not None:
            logger.info("Reconciling new %r -> %r (alias)", path, target)
            write_existing(target, path, content)
            cleanup.append(path)
        else:
            new[path] = content

    for target, sources in writers.items():
        if len(sources) > 1:
            overridden = ", ".join(f"'{s}'" for s in sources[:-1])
            advisories.append(
                f"Several proposals resolved to '{target}'; kept '{sources[-1]}', "
                f"overrode {overridden}"
            )

    if mode is ReconcileMode.STRICT and new and not has_explicit_create(prompt):
        demoted = sorted(new)
        for path, content in new.items():
            modified[path] = content
        new = {}
        advisories.append(
            "Strict mode: new files were not requested; treated as modifications: "
            + ", ".join(demoted)
        )

    deleted: list[str] = []
    for path in dict.fromkeys([*proposed_deleted, *cleanup]):
        if path in modified or path in new:
            advisories.append(f"'{path}' was both written and deleted; keeping the write")
            continue
        deleted.append(path)

    for advisory in advisories:
        logger.warning("Reconciliation: %s", advisory)

    return ReconciliationResult(
        modified_files=modified,
        new_files=new,
        deleted_files=deleted,
        advisories=advisories,
    )


def apply_to_snapshot(
    previous_files: Mapping[str, str], result: ReconciliationResult
) -> dict[str, str]:
    """previous - deleted + modified + new."""
    snapshot = {path: content for path, content in previous_files.items()}
    for path in result.deleted_files:
        snapshot.pop(path, None)
    snapshot.update(result.modified_files)
    snapshot.update(result.new_files)
    return snapshot
