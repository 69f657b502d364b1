"""Iteration orchestrator: one request in, one committed version (or answer) out.

Stages:
  PENDING → CLASSIFYING → CONTEXT_BUILDING → GENERATING → RECONCILING
          → PERSISTING → (APPLYING →) DONE
  Answer-only requests go GENERATING → DONE. Any stage may go to FAILED.

The version record (status generating, files = previous snapshot) is created on
entering GENERATING. A stage exception marks it failed and surfaces as
IterationFailed carrying the partial state. Everything after PERSISTING
(conversation, index refresh, apply) is best-effort and only adds warnings.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from iterforge.classify.classifier import ClassificationResult, CommandClassifier
from iterforge.classify.patterns import CommandType
from iterforge.errors import IterationFailed, StageTransitionError, ValidationError
from iterforge.generate.generator import (
    GenerationOutput,
    GenerationRequest,
    Generator,
    ProgressCallback,
)
from iterforge.rag.context import ContextBuilder
from iterforge.rag.conversation import ASSISTANT, USER, ConversationStore
from iterforge.rag.index import FileIndexer
from iterforge.rag.models import ContextOptions, RetrievalContext
from iterforge.reconcile.engine import (
    ReconcileMode,
    ReconciliationResult,
    apply_to_snapshot,
    reconcile,
)
from iterforge.sandbox.target import ExecutionTarget
from iterforge.versions.store import VersionStore

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    PENDING = "pending"
    CLASSIFYING = "classifying"
    CONTEXT_BUILDING = "context_building"
    GENERATING = "generating"
    RECONCILING = "reconciling"
    PERSISTING = "persisting"
    APPLYING = "applying"
    DONE = "done"
    FAILED = "failed"


STAGE_TRANSITIONS: dict[Stage, frozenset[Stage]] = {
    Stage.PENDING: frozenset({Stage.CLASSIFYING, Stage.FAILED}),
    Stage.CLASSIFYING: frozenset({Stage.CONTEXT_BUILDING, Stage.FAILED}),
    Stage.CONTEXT_BUILDING: frozenset({Stage.GENERATING, Stage.FAILED}),
    Stage.GENERATING: frozenset({Stage.RECONCILING, Stage.DONE, Stage.FAILED}),
    Stage.RECONCILING: frozenset({Stage.PERSISTING, Stage.FAILED}),
    Stage.PERSISTING: frozenset({Stage.APPLYING, Stage.DONE, Stage.FAILED}),
    Stage.APPLYING: frozenset({Stage.DONE}),
    Stage.DONE: frozenset(),
    Stage.FAILED: frozenset(),
}


@dataclass
class IterationOptions:
    """Per-request options.

    Attributes:
        message_limit: Conversation turns passed to the context builder.
        max_files: Cap on semantic and content-search hits.
        include_tests: Let semantic search return test files.
        apply: Push the committed changes to the execution target.
        restart: Ask the target to restart after applying.
        on_progress: Called with (stage, detail) while generation streams.
    """

    message_limit: int = 20
    max_files: int = 15
    include_tests: bool = False
    apply: bool = True
    restart: bool = True
    on_progress: ProgressCallback | None = None


@dataclass
class IterationState:
    stage: Stage = Stage.PENDING
    history: list[Stage] = field(default_factory=lambda: [Stage.PENDING])
    classification: ClassificationResult | None = None
    context: RetrievalContext | None = None
    version_id: str | None = None
    warnings: list[str] = field(default_factory=list)

    def advance(self, target: Stage) -> None:
        if target not in STAGE_TRANSITIONS[self.stage]:
            raise StageTransitionError(
                f"Illegal stage transition {self.stage.value} -> {target.value}"
            )
        logger.info("Stage %s -> %s", self.stage.value, target.value)
        self.stage = target
        self.history.append(target)


@dataclass
class IterationResult:
    version_id: str | None
    version_number: int | None
    modified_files: dict[str, str] = field(default_factory=dict)
    new_files: dict[str, str] = field(default_factory=dict)
    deleted_files: list[str] = field(default_factory=list)
    description: str = ""
    warnings: list[str] = field(default_factory=list)
    answer: str | None = None
    classification: ClassificationResult | None = None


class Orchestrator:
    """Drive one request through classification, retrieval, generation,
    reconciliation and persistence.

    ``conversations``, ``indexer`` and ``target`` are optional; without them
    the corresponding best-effort step is skipped.
    """

    def __init__(
        self,
        versions: VersionStore,
        classifier: CommandClassifier,
        context_builder: ContextBuilder,
        generator: Generator,
        *,
        conversations: ConversationStore | None = None,
        indexer: FileIndexer | None = None,
        target: ExecutionTarget | None = None,
    ) -> None:
        self._versions = versions
        self._classifier = classifier
        self._context_builder = context_builder
        self._generator = generator
        self._conversations = conversations
        self._indexer = indexer
        self._target = target

    async def run_iteration(
        self,
        project_id: str,
        prompt: str,
        options: IterationOptions | None = None,
    ) -> IterationResult:
        """Run one iteration.

        Raises:
            ValidationError: Empty prompt or project id, or unknown project.
                Raised before any side effect.
            IterationFailed: Any stage failure; the version record, if one
                was created, is marked failed.
        """
        options = options or IterationOptions()
        if not project_id or not project_id.strip():
            raise ValidationError("Project id must not be empty.")
        if not prompt or not prompt.strip():
            raise ValidationError("Prompt must not be empty.")
        project = await self._versions.get_project(project_id)
        if project is None:
            raise ValidationError(f"Unknown project: {project_id}")

        state = IterationState()
        try:
            state.advance(Stage.CLASSIFYING)
            latest = await self._versions.get_latest_version(project_id)
            existing_paths = list(latest.files) if latest else []
            state.classification = await self._classifier.classify(prompt, existing_paths)
            answer_mode = state.classification.intent == CommandType.ANSWER_QUESTION

            state.advance(Stage.CONTEXT_BUILDING)
            state.context = await self._context_builder.build_context(
                project_id,
                prompt,
                ContextOptions(
                    message_limit=options.message_limit,
                    max_files=options.max_files,
                    include_tests=options.include_tests,
                    is_foreign_project=project.is_foreign,
                ),
            )
            state.warnings.extend(state.context.warnings)

            state.advance(Stage.GENERATING)
            if not answer_mode:
                version_id = await self._open_version(
                    project_id, prompt, state.classification, state.context
                )
                state.version_id = version_id
            output = await self._generator.generate(
                GenerationRequest(
                    prompt=prompt,
                    context=state.context,
                    answer_mode=answer_mode,
                    strict=project.is_foreign,
                ),
                options.on_progress,
            )
            state.warnings.extend(output.warnings)

            if answer_mode:
                state.advance(Stage.DONE)
                await self._record_conversation(project_id, prompt, output.answer or "", state)
                return IterationResult(
                    version_id=None,
                    version_number=None,
                    description=output.description,
                    warnings=state.warnings,
                    answer=output.answer,
                    classification=state.classification,
                )

            state.advance(Stage.RECONCILING)
            reconciled = reconcile(
                output.modified_files,
                output.new_files,
                output.deleted_files,
                state.context.previous_files,
                mode=ReconcileMode.STRICT if project.is_foreign else ReconcileMode.STANDARD,
                prompt=prompt,
            )
            state.warnings.extend(reconciled.advisories)

            state.advance(Stage.PERSISTING)
            files = apply_to_snapshot(state.context.previous_files, reconciled)
            version = await self._versions.mark_complete(
                version_id,
                files=files,
                description=output.description,
                metadata=_completion_metadata(
                    state.classification, state.context, output, reconciled, state.warnings
                ),
            )
        except Exception as exc:
            failed_stage = await self._fail(state, exc)
            raise IterationFailed(
                failed_stage.value,
                exc,
                classification=state.classification,
                context=state.context,
                version_id=state.version_id,
            ) from exc

        await self._record_conversation(project_id, prompt, output.description, state)
        await self._refresh_index(project_id, version.id, files, state)

        if options.apply and self._target is not None:
            state.advance(Stage.APPLYING)
            await self._apply(self._target, reconciled, options.restart, state)
        state.advance(Stage.DONE)

        return IterationResult(
            version_id=version.id,
            version_number=version.version_number,
            modified_files=reconciled.modified_files,
            new_files=reconciled.new_files,
            deleted_files=reconciled.deleted_files,
            description=output.description,
            warnings=state.warnings,
            classification=state.classification,
        )

    # ------------------------------------------------------------------
    # Stage helpers
    # ------------------------------------------------------------------

    async def _open_version(
        self,
        project_id: str,
        prompt: str,
        classification: ClassificationResult,
        context: RetrievalContext,
    ) -> str:
        previous = context.previous_version
        number = await self._versions.get_next_version_number(project_id)
        version = await self._versions.create_version(
            project_id,
            number,
            prompt,
            context.previous_files,
            command_type=classification.intent.value,
            parent_version_id=previous.id if previous else None,
            metadata={"classification": _classification_dict(classification)},
        )
        return version.id

    async def _fail(self, state: IterationState, exc: Exception) -> Stage:
        """Move to FAILED and mark the open version failed. Returns the failed stage."""
        failed_stage = state.stage
        state.advance(Stage.FAILED)
        logger.error("Iteration failed during %s: %s", failed_stage.value, exc)
        if state.version_id is None:
            return failed_stage
        metadata: dict[str, Any] = {"error": str(exc), "stage": failed_stage.value}
        if state.classification is not None:
            metadata["classification"] = _classification_dict(state.classification)
        try:
            await self._versions.mark_failed(state.version_id, metadata=metadata)
        except Exception as mark_exc:
            logger.error("Could not mark version %s failed: %s", state.version_id, mark_exc)
        return failed_stage

    async def _record_conversation(
        self, project_id: str, prompt: str, reply: str, state: IterationState
    ) -> None:
        if self._conversations is None:
            return
        try:
            await self._conversations.append_message(project_id, USER, prompt)
            await self._conversations.append_message(project_id, ASSISTANT, reply)
        except Exception as exc:
            logger.warning("Could not record conversation for %s: %s", project_id, exc)
            state.warnings.append(f"Conversation not recorded: {exc}")

    async def _refresh_index(
        self, project_id: str, version_id: str, files: dict[str, str], state: IterationState
    ) -> None:
        if self._indexer is None:
            return
        try:
            report = await self._indexer.index_version(project_id, version_id, files)
        except Exception as exc:
            logger.warning("Indexing version %s failed: %s", version_id, exc)
            state.warnings.append(f"Semantic index not refreshed: {exc}")
            return
        if report.failed:
            state.warnings.append(
                f"{len(report.failed)} file(s) could not be indexed: "
                + ", ".join(sorted(report.failed))
            )

    async def _apply(
        self,
        target: ExecutionTarget,
        reconciled: ReconciliationResult,
        restart: bool,
        state: IterationState,
    ) -> None:
        writes = {**reconciled.modified_files, **reconciled.new_files}
        try:
            health = await target.apply(writes, list(reconciled.deleted_files), restart)
        except Exception as exc:
            logger.warning("Apply to execution target failed: %s", exc)
            state.warnings.append(f"Apply failed: {exc}")
            return
        if not health.healthy:
            logger.warning("Execution target unhealthy after apply: %s", health.detail)
            state.warnings.append(f"Execution target unhealthy: {health.detail}")


def _classification_dict(classification: ClassificationResult) -> dict[str, Any]:
    data = asdict(classification)
    data["intent"] = classification.intent.value
    return data


def _completion_metadata(
    classification: ClassificationResult,
    context: RetrievalContext,
    output: GenerationOutput,
    reconciled: ReconciliationResult,
    warnings: list[str],
) -> dict[str, Any]:
    return {
        "classification": _classification_dict(classification),
        "modified_files": sorted(reconciled.modified_files),
        "new_files": sorted(reconciled.new_files),
        "deleted_files": list(reconciled.deleted_files),
        "changes": list(output.changes),
        "context_stats": asdict(context.stats),
        "warnings": list(warnings),
    }
