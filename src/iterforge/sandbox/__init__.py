"""Execution targets for applying committed changes."""

from iterforge.sandbox.target import (
    DirectoryTarget,
    ExecutionTarget,
    HealthResult,
    read_snapshot,
)

__all__ = ["DirectoryTarget", "ExecutionTarget", "HealthResult", "read_snapshot"]
