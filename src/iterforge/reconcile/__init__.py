"""Reconciliation of proposed file changes against the previous snapshot."""

from iterforge.reconcile.engine import (
    EXPLICIT_CREATE_PATTERNS,
    ReconcileMode,
    ReconciliationResult,
    apply_to_snapshot,
    build_alias_index,
    normalize_path,
    reconcile,
    resolve_alias,
)

__all__ = [
    "EXPLICIT_CREATE_PATTERNS",
    "ReconcileMode",
    "ReconciliationResult",
    "apply_to_snapshot",
    "build_alias_index",
    "normalize_path",
    "reconcile",
    "resolve_alias",
]
