"""Version Store: append-only DAG of immutable project snapshots."""

from iterforge.versions.store import (
    ComparisonSummary,
    FileDiff,
    VersionComparison,
    VersionStore,
    compare_versions,
)

__all__ = [
    "ComparisonSummary",
    "FileDiff",
    "VersionComparison",
    "VersionStore",
    "compare_versions",
]
