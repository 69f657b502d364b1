"""Exception taxonomy for the iteration pipeline.

Which errors escape, and from where:
  ValidationError      raised before any side effect (bad input, unknown project)
  ClassificationFailure never escapes the classifier (fallback result instead)
  RetrievalFailure     never escapes the context builder (empty contribution)
  GenerationFailure    terminal; the version is marked failed
  PersistenceFailure   terminal; the version is marked failed when possible
  ApplyFailure         never terminal; becomes a warning on the result
  IterationFailed      the single terminal error surfaced by the orchestrator
"""

from __future__ import annotations

from typing import Any


class IterforgeError(Exception):
    """Base class for every error raised by iterforge."""


class ValidationError(IterforgeError, ValueError):
    """Malformed or empty input."""


class ClassificationFailure(IterforgeError):
    """The classification backend failed or returned something unusable."""


class RetrievalFailure(IterforgeError):
    """A retrieval source (history, semantic index) failed."""


class GenerationFailure(IterforgeError):
    """The generation collaborator failed or produced unparseable output."""


class PersistenceFailure(IterforgeError):
    """A datastore write failed (including version number conflicts)."""


class VersionNotFound(PersistenceFailure, LookupError):
    """No version with the requested id exists."""


class VersionStateError(PersistenceFailure):
    """An update would move a version's status backwards or touch a finished version."""


class ApplyFailure(IterforgeError):
    """Pushing files to the live execution target failed."""


class IterationFailed(IterforgeError):
    """Terminal pipeline failure, carrying the partial state accumulated so far.

    Attributes:
        stage: Name of the stage that raised.
        cause: The original exception.
        classification: ClassificationResult, if classification finished.
        context: RetrievalContext, if the context was built.
        version_id: Id of the version record marked failed, if one was created.
    """

    def __init__(
        self,
        stage: str,
        cause: BaseException,
        *,
        classification: Any = None,
        context: Any = None,
        version_id: str | None = None,
    ) -> None:
        super().__init__(f"Iteration failed during {stage}: {cause}")
        self.stage = stage
        self.cause = cause
        self.classification = classification
        self.context = context
        self.version_id = version_id


class StageTransitionError(IterforgeError):
    """The orchestrator attempted a stage transition its table does not allow."""
