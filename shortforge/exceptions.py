"""Shared exceptions for the production pipeline.

This module contains the error taxonomy used across the registry, the stage
executors and the orchestrator. Stage executors raise classified errors; only
the orchestrator decides whether a failure is retried or terminal.

Taxonomy:
    - ValidationError: bad topic/duration/input, never retried
    - CollaboratorError: an external call failed, retried only if retryable
    - AllocationError: the timeline cannot cover the audio, never retried
    - ConflictError: a guarded registry transition lost a race
    - TaskNotFoundError: unknown task id
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from shortforge.models import PipelineStage, TaskState


class PipelineError(Exception):
    """Base class for all errors raised by the production pipeline."""

    error_type = "pipeline_error"
    retryable = False


class ConfigurationError(PipelineError):
    """Raised when required configuration is missing.

    This error indicates a configuration problem that prevents video
    production from proceeding (e.g., live backend selected without an
    ELEVENLABS_API_KEY, or an unknown COLLABORATOR_BACKEND value).
    """

    error_type = "configuration_error"


class ValidationError(PipelineError):
    """Raised for invalid caller or stage input.

    Surfaced immediately to the caller and never retried: retrying with the
    same input cannot change the outcome.
    """

    error_type = "validation_error"


class TaskNotFoundError(PipelineError):
    """Raised when a task id is not present in the registry."""

    error_type = "not_found"

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


class ConflictError(PipelineError):
    """Raised when a guarded transition finds the task in an unexpected state.

    The registry never retries on the caller's behalf. The caller (usually the
    scheduler or orchestrator) must re-read the task and decide again.

    Attributes:
        task_id: Task whose transition was rejected.
        expected: Description of the state/revision the caller expected.
        actual: Description of what the registry actually holds.
    """

    error_type = "conflict"

    def __init__(self, task_id: str, expected: str, actual: str):
        self.task_id = task_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Conflicting transition on task {task_id}: expected {expected}, found {actual}"
        )


class DuplicateTaskError(ConflictError):
    """Raised when creating a task whose id already exists."""

    def __init__(self, task_id: str):
        super().__init__(task_id, expected="no existing task", actual="task already exists")


class InvalidStateTransitionError(PipelineError):
    """Raised when attempting a transition not allowed by VALID_TRANSITIONS.

    Attributes:
        message: Human-readable error message describing the invalid transition.
        from_state: The current TaskState before the attempted transition.
        to_state: The TaskState that was attempted but is not valid.

    Example:
        >>> registry.transition(task_id, TaskState.COMPLETED, expected_state=TaskState.PENDING)
        InvalidStateTransitionError: Invalid transition: pending → completed
    """

    error_type = "invalid_transition"

    def __init__(self, message: str, from_state: "TaskState", to_state: "TaskState"):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(message)

    def __str__(self) -> str:
        """Return detailed error message with transition context."""
        base_message = super().__str__()
        return f"{base_message} (from={self.from_state.value}, to={self.to_state.value})"


class CollaboratorError(PipelineError):
    """Raised by a stage executor when its external collaborator call fails.

    The executor, not the orchestrator, decides the ``retryable`` flag.

    Attributes:
        stage: Pipeline stage whose collaborator failed (None outside a stage).
        retryable: True for timeouts, rate limits, 5xx and transient I/O.
        error_type: Short machine-readable classification label.
    """

    def __init__(
        self,
        message: str,
        *,
        retryable: bool,
        stage: "PipelineStage | None" = None,
        error_type: str = "collaborator_error",
    ):
        self.stage = stage
        self.retryable = retryable
        self.error_type = error_type
        super().__init__(message)


class AllocationError(PipelineError):
    """Raised when the visual timeline cannot cover the target duration.

    Terminal: the same asset list always yields the same shortfall.
    """

    error_type = "allocation_error"


class AssetReferenceError(PipelineError):
    """Raised by a renderer when one slice references a missing or malformed asset.

    The render stage reacts by dropping the offending slice and retrying once.

    Attributes:
        source_ref: The asset reference the encoder could not read.
    """

    error_type = "asset_reference_error"

    def __init__(self, source_ref: str, reason: str = "asset unreadable"):
        self.source_ref = source_ref
        super().__init__(f"{reason}: {source_ref}")
