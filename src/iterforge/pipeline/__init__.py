"""Iteration pipeline: the per-request state machine."""

from iterforge.pipeline.orchestrator import (
    STAGE_TRANSITIONS,
    IterationOptions,
    IterationResult,
    IterationState,
    Orchestrator,
    Stage,
)

__all__ = [
    "STAGE_TRANSITIONS",
    "IterationOptions",
    "IterationResult",
    "IterationState",
    "Orchestrator",
    "Stage",
]
