"""Pipeline Orchestrator Service for end-to-end short video production.

This module drives one task through the five content stages, writing each
stage's artifact and the resulting state back to the task registry.

Key Responsibilities:
- Claim a pending task (guarded pending → script_generating transition)
- Execute the 5 stages in sequence (script → audio → visuals → video → thumbnail)
- Attach upload metadata (title, description, tags) alongside the thumbnail
- Retry retryable collaborator failures with exponential backoff (tenacity)
- Record terminal failures on the task with the stage and reason
- Honour cooperative cancellation between stages
- Log stage durations and the overall pipeline duration

Architecture Pattern: "Guarded Transition + State Machine"
- Every registry write states the state it expects the task to be in
- A ConflictError means another actor changed the task; the orchestrator
  stops touching it and returns
- Stage artifacts are written in the same transition that leaves the stage,
  so an artifact is present only if its stage succeeded

Retry Policy (per stage):
- Only CollaboratorError with retryable=True is retried
- At most max_retries attempts (default 3)
- Wait base_delay × 2^(attempt−1) between attempts
- Before each re-invocation the attempt counter is persisted through a
  self-transition, so pollers see "attempt 2 of 3"
- ValidationError, AllocationError, fatal CollaboratorErrors and exhausted
  budgets fail the task immediately; no later stage runs

Usage:
    from shortforge.services.pipeline_orchestrator import PipelineOrchestrator

    orchestrator = PipelineOrchestrator(registry, collaborators)
    task = await orchestrator.run(task_id)
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import pydantic
import structlog
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from shortforge.clients.base import Collaborators
from shortforge.config import PipelineSettings
from shortforge.exceptions import (
    AllocationError,
    CollaboratorError,
    ConflictError,
    PipelineError,
    TaskNotFoundError,
    ValidationError,
)
from shortforge.models import NEXT_STATE, STAGE_ORDER, PipelineStage, TaskState
from shortforge.schemas.media import StyleConfig
from shortforge.schemas.task import Task, TaskArtifacts, TaskFailure, TaskPatch
from shortforge.services.metadata_generation import build_video_metadata
from shortforge.services.script_generation import ScriptGenerationStage, ScriptRequest
from shortforge.services.speech_synthesis import SpeechRequest, SpeechSynthesisStage
from shortforge.services.stage_executor import classify_exception
from shortforge.services.task_registry import TaskRegistry
from shortforge.services.thumbnail_generation import ThumbnailGenerationStage, ThumbnailRequest
from shortforge.services.timeline_allocator import allocate_timeline, build_render_timeline
from shortforge.services.video_render import VideoRenderStage
from shortforge.services.visual_search import VisualRequest, VisualSearchStage
from shortforge.utils.filesystem import task_workspace
from shortforge.utils.logging import get_logger

CANCELLED_ERROR_TYPE = "cancelled"


@dataclass
class StageOutcome:
    """Result of running one stage, retries included.

    Attributes:
        stage: Stage that ran.
        completed: Whether the stage produced its artifact.
        attempts: Number of executor invocations.
        duration_seconds: Wall-clock time including backoff waits.
        task: Task snapshot after the stage's final transition (None when a
            conflicting writer took the task away).
        failure: Recorded failure when not completed.
    """

    stage: PipelineStage
    completed: bool
    attempts: int
    duration_seconds: float
    task: Task | None = None
    failure: TaskFailure | None = None


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, CollaboratorError) and exc.retryable


def _failure_from(stage: PipelineStage, exc: BaseException, attempt: int) -> TaskFailure:
    if isinstance(exc, PipelineError):
        error_type = exc.error_type
        retryable = bool(getattr(exc, "retryable", False))
    else:
        classified = classify_exception(stage, exc)
        error_type = classified.error_type
        retryable = classified.retryable
    return TaskFailure(
        stage=stage,
        error_type=error_type,
        message=str(exc) or exc.__class__.__name__,
        retryable=retryable,
        attempt=attempt,
    )


class PipelineOrchestrator:
    """Runs the production pipeline for one task at a time.

    The orchestrator holds no per-task state between runs; one instance can
    be shared by every worker coroutine of a pool.

    Args:
        registry: Task registry (in-memory or SQL).
        collaborators: External collaborators the stages call.
        settings: Retry budget, backoff base, chunk size, voice, timeouts.
        style: Thumbnail style (defaults to the professional template).
        sleep: Coroutine used for backoff waits (injectable for tests).

    Example:
        >>> orchestrator = PipelineOrchestrator(registry, build_mock_collaborators())
        >>> task = await orchestrator.run(task_id)
        >>> task.state
        <TaskState.COMPLETED: 'completed'>
    """

    def __init__(
        self,
        registry: TaskRegistry,
        collaborators: Collaborators,
        settings: PipelineSettings | None = None,
        style: StyleConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.registry = registry
        self.settings = settings or PipelineSettings()
        self.style = style or StyleConfig()
        self.log = get_logger(__name__)
        self._sleep = sleep

        timeouts = self.settings.timeouts
        self.script_stage = ScriptGenerationStage(collaborators.script, timeout=timeouts.script)
        self.speech_stage = SpeechSynthesisStage(
            collaborators.speech,
            chunk_size=self.settings.speech_chunk_size,
            timeout=timeouts.speech,
            chunk_retry_base_delay=self.settings.retry_base_delay,
            sleep=sleep,
        )
        self.visual_stage = VisualSearchStage(collaborators.visuals, timeout=timeouts.visual_search)
        self.render_stage = VideoRenderStage(collaborators.renderer)
        self.thumbnail_stage = ThumbnailGenerationStage(
            collaborators.thumbnail, timeout=timeouts.thumbnail
        )

    async def run(self, task_id: str) -> Task | None:
        """Execute the complete pipeline for one task.

        Pipeline Flow:
        1. Claim the task (pending → script_generating); lose the race → return
        2. For each stage in order:
           a. Stop with a "cancelled" failure if cancellation was requested
           b. Run the stage executor under the retry policy
           c. On success transition to the next state with the artifact
           d. On failure transition to failed with stage + reason and stop
        3. The thumbnail stage's success transition lands in completed

        Args:
            task_id: Task to run.

        Returns:
            The task in its final state, or None when the task could not be
            claimed or another writer took it over mid-run.
        """
        try:
            task = await self.registry.transition(
                task_id,
                TaskState.SCRIPT_GENERATING,
                expected_state=TaskState.PENDING,
            )
        except ConflictError as e:
            self.log.info("pipeline_claim_lost", task_id=task_id, actual_state=e.actual)
            return None
        except TaskNotFoundError:
            self.log.error("task_not_found", task_id=task_id)
            return None

        with task_workspace(task_id), structlog.contextvars.bound_contextvars(task_id=task_id):
            return await self._run_claimed(task)

    async def _run_claimed(self, task: Task) -> Task | None:
        pipeline_start = time.monotonic()
        self.log.info(
            "pipeline_started",
            topic=task.topic[:80],
            target_duration_seconds=task.target_duration_seconds,
        )

        for stage in STAGE_ORDER:
            task = await self.registry.get(task.id)
            if task.state is not TaskState(stage.value):
                self.log.warning(
                    "pipeline_aborted",
                    reason="unexpected_state",
                    stage=stage.value,
                    actual_state=task.state.value,
                )
                return None

            if task.cancel_requested:
                return await self._cancel(task, stage)

            outcome = await self._run_stage(task, stage)
            if not outcome.completed or outcome.task is None:
                return outcome.task
            task = outcome.task

        self.log.info(
            "pipeline_completed",
            duration_seconds=round(time.monotonic() - pipeline_start, 3),
            video_ref=task.artifacts.video_ref,
            thumbnail_ref=task.artifacts.thumbnail_ref,
        )
        return task

    async def _run_stage(self, task: Task, stage: PipelineStage) -> StageOutcome:
        """Run one stage under the retry policy and record the result."""
        stage_state = TaskState(stage.value)
        stage_start = time.monotonic()
        attempt_number = task.attempt

        self.log.info("stage_started", stage=stage.value, attempt=attempt_number)

        retrying = AsyncRetrying(
            retry=retry_if_exception(_is_retryable),
            stop=stop_after_attempt(self.settings.max_retries),
            wait=wait_exponential(multiplier=self.settings.retry_base_delay),
            sleep=self._sleep,
            before_sleep=lambda retry_state: self.log.warning(
                "stage_retry_scheduled",
                stage=stage.value,
                attempt=retry_state.attempt_number,
                wait_seconds=retry_state.next_action.sleep if retry_state.next_action else 0,
                error=str(retry_state.outcome.exception())[:200] if retry_state.outcome else None,
            ),
        )

        try:
            async for attempt in retrying:
                with attempt:
                    attempt_number = attempt.retry_state.attempt_number
                    if attempt_number > 1:
                        task = await self.registry.transition(
                            task.id,
                            stage_state,
                            TaskPatch(attempt=attempt_number),
                            expected_state=stage_state,
                        )
                    artifacts = await self._execute(stage, task)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            failure = _failure_from(stage, last_error, attempt_number)
            failure = failure.model_copy(
                update={"message": f"Retry budget exhausted after {attempt_number} attempts: {failure.message}"}
            )
            return await self._fail(task, stage, failure, stage_start)
        except ConflictError as e:
            self.log.warning("pipeline_aborted", reason="conflict", stage=stage.value, error=str(e))
            return StageOutcome(stage, False, attempt_number, time.monotonic() - stage_start)
        except Exception as e:
            if not isinstance(e, ValidationError | AllocationError | CollaboratorError):
                self.log.error(
                    "stage_unexpected_error",
                    stage=stage.value,
                    error_type=type(e).__name__,
                    exc_info=True,
                )
            failure = _failure_from(stage, e, attempt_number)
            return await self._fail(task, stage, failure, stage_start)

        try:
            task = await self.registry.transition(
                task.id,
                NEXT_STATE[stage],
                TaskPatch(artifacts=artifacts, attempt=1),
                expected_state=stage_state,
            )
        except ConflictError as e:
            self.log.warning("pipeline_aborted", reason="conflict", stage=stage.value, error=str(e))
            return StageOutcome(stage, False, attempt_number, time.monotonic() - stage_start)

        duration = time.monotonic() - stage_start
        self.log.info(
            "stage_completed",
            stage=stage.value,
            attempts=attempt_number,
            duration_seconds=round(duration, 3),
            progress_percent=task.progress_percent,
        )
        return StageOutcome(stage, True, attempt_number, duration, task=task)

    async def _execute(self, stage: PipelineStage, task: Task) -> TaskArtifacts:
        """Invoke the executor for stage and wrap its output as an artifacts patch."""
        artifacts = task.artifacts

        if stage is PipelineStage.SCRIPT_GENERATING:
            script = await self.script_stage.execute(
                ScriptRequest(task.topic, task.target_duration_seconds)
            )
            return TaskArtifacts(script_text=script)

        if stage is PipelineStage.AUDIO_GENERATING:
            if not artifacts.script_text:
                raise ValidationError("Audio stage requires a script")
            audio = await self.speech_stage.execute(
                SpeechRequest(artifacts.script_text, self.settings.voice_id)
            )
            return TaskArtifacts(audio=audio)

        if stage is PipelineStage.VISUALS_PROCESSING:
            if artifacts.audio is None:
                raise ValidationError("Visuals stage requires narration audio")
            assets = await self.visual_stage.execute(
                VisualRequest(task.topic, task.target_duration_seconds)
            )
            slices = allocate_timeline(assets, artifacts.audio.duration_seconds)
            return TaskArtifacts(visual_slices=slices)

        if stage is PipelineStage.VIDEO_ASSEMBLING:
            if artifacts.audio is None or not artifacts.visual_slices:
                raise ValidationError("Render stage requires audio and visual slices")
            try:
                timeline = build_render_timeline(artifacts.visual_slices, artifacts.audio)
            except pydantic.ValidationError as e:
                raise ValidationError(f"Invalid render timeline: {e}") from e
            video_ref = await self.render_stage.execute(timeline)
            return TaskArtifacts(video_ref=video_ref)

        thumbnail_ref = await self.thumbnail_stage.execute(ThumbnailRequest(task.topic, self.style))
        return TaskArtifacts(
            thumbnail_ref=thumbnail_ref,
            metadata=build_video_metadata(task.topic, artifacts.script_text),
        )

    async def _fail(
        self,
        task: Task,
        stage: PipelineStage,
        failure: TaskFailure,
        stage_start: float,
    ) -> StageOutcome:
        duration = time.monotonic() - stage_start
        self.log.error(
            "stage_failed",
            stage=stage.value,
            error_type=failure.error_type,
            retryable=failure.retryable,
            attempt=failure.attempt,
            error_message=failure.message[:500],
            duration_seconds=round(duration, 3),
        )
        try:
            failed = await self.registry.transition(
                task.id,
                TaskState.FAILED,
                TaskPatch(error=failure),
                expected_state=TaskState(stage.value),
            )
        except ConflictError as e:
            self.log.warning("pipeline_aborted", reason="conflict", stage=stage.value, error=str(e))
            return StageOutcome(stage, False, failure.attempt, duration, failure=failure)
        return StageOutcome(stage, False, failure.attempt, duration, task=failed, failure=failure)

    async def _cancel(self, task: Task, stage: PipelineStage) -> Task | None:
        failure = TaskFailure(
            stage=stage,
            error_type=CANCELLED_ERROR_TYPE,
            message="Cancelled before stage started",
            retryable=False,
            attempt=task.attempt,
        )
        self.log.info("pipeline_cancelled", stage=stage.value)
        outcome = await self._fail(task, stage, failure, time.monotonic())
        return outcome.task
