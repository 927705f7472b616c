"""SQLAlchemy 2.0 ORM models and the task state machine.

This module contains the durable task table and the state enums shared by the
registry, the orchestrator and the schemas. All models use the Mapped[type]
annotation pattern required by SQLAlchemy 2.0.

State Machine:
    pending → script_generating → audio_generating → visuals_processing
    → video_assembling → thumbnail_generating → completed

    Any non-terminal state may move to failed. Every stage state may also
    transition to itself (retry bookkeeping: attempt counter bumps).
    completed and failed are terminal; the explicit retry action (requeue)
    is the only way back to pending and bypasses VALID_TRANSITIONS.
"""

import enum
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Enum, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, validates

from shortforge.exceptions import InvalidStateTransitionError


def utcnow() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


class TaskState(enum.Enum):
    """Lifecycle states of a production task.

    Pipeline Flow (Happy Path):
        pending → script_generating → audio_generating → visuals_processing
        → video_assembling → thumbnail_generating → completed

    Terminal States:
        completed (all artifacts produced), failed (stage + reason recorded)
    """

    PENDING = "pending"
    SCRIPT_GENERATING = "script_generating"
    AUDIO_GENERATING = "audio_generating"
    VISUALS_PROCESSING = "visuals_processing"
    VIDEO_ASSEMBLING = "video_assembling"
    THUMBNAIL_GENERATING = "thumbnail_generating"
    COMPLETED = "completed"
    FAILED = "failed"


class PipelineStage(enum.Enum):
    """The five content stages, named after the state a task holds while running them."""

    SCRIPT_GENERATING = "script_generating"
    AUDIO_GENERATING = "audio_generating"
    VISUALS_PROCESSING = "visuals_processing"
    VIDEO_ASSEMBLING = "video_assembling"
    THUMBNAIL_GENERATING = "thumbnail_generating"


STAGE_ORDER: list[PipelineStage] = list(PipelineStage)

# Stage state → stage
STAGE_FOR_STATE: dict[TaskState, PipelineStage] = {
    TaskState(stage.value): stage for stage in PipelineStage
}

# Stage → state that follows it on success
NEXT_STATE: dict[PipelineStage, TaskState] = {
    PipelineStage.SCRIPT_GENERATING: TaskState.AUDIO_GENERATING,
    PipelineStage.AUDIO_GENERATING: TaskState.VISUALS_PROCESSING,
    PipelineStage.VISUALS_PROCESSING: TaskState.VIDEO_ASSEMBLING,
    PipelineStage.VIDEO_ASSEMBLING: TaskState.THUMBNAIL_GENERATING,
    PipelineStage.THUMBNAIL_GENERATING: TaskState.COMPLETED,
}

TERMINAL_STATES = frozenset({TaskState.COMPLETED, TaskState.FAILED})
RUNNING_STATES = frozenset(STAGE_FOR_STATE)

VALID_TRANSITIONS: dict[TaskState, list[TaskState]] = {
    TaskState.PENDING: [TaskState.SCRIPT_GENERATING, TaskState.FAILED],
    TaskState.SCRIPT_GENERATING: [
        TaskState.SCRIPT_GENERATING,
        TaskState.AUDIO_GENERATING,
        TaskState.FAILED,
    ],
    TaskState.AUDIO_GENERATING: [
        TaskState.AUDIO_GENERATING,
        TaskState.VISUALS_PROCESSING,
        TaskState.FAILED,
    ],
    TaskState.VISUALS_PROCESSING: [
        TaskState.VISUALS_PROCESSING,
        TaskState.VIDEO_ASSEMBLING,
        TaskState.FAILED,
    ],
    TaskState.VIDEO_ASSEMBLING: [
        TaskState.VIDEO_ASSEMBLING,
        TaskState.THUMBNAIL_GENERATING,
        TaskState.FAILED,
    ],
    TaskState.THUMBNAIL_GENERATING: [
        TaskState.THUMBNAIL_GENERATING,
        TaskState.COMPLETED,
        TaskState.FAILED,
    ],
    TaskState.COMPLETED: [],  # Terminal state - only requeue leaves it
    TaskState.FAILED: [],  # Terminal state - only requeue leaves it
}


def validate_transition(from_state: TaskState, to_state: TaskState) -> None:
    """Raise InvalidStateTransitionError unless from_state → to_state is allowed.

    Args:
        from_state: Current stored state.
        to_state: Requested state.

    Raises:
        InvalidStateTransitionError: If the edge is not in VALID_TRANSITIONS.

    Example:
        >>> validate_transition(TaskState.PENDING, TaskState.SCRIPT_GENERATING)
        >>> validate_transition(TaskState.PENDING, TaskState.COMPLETED)
        InvalidStateTransitionError: Invalid transition: pending → completed
    """
    if to_state not in VALID_TRANSITIONS.get(from_state, []):
        raise InvalidStateTransitionError(
            f"Invalid transition: {from_state.value} → {to_state.value}",
            from_state=from_state,
            to_state=to_state,
        )


def stage_for_state(state: TaskState) -> PipelineStage | None:
    """Return the stage a running state belongs to, or None for pending/terminal."""
    return STAGE_FOR_STATE.get(state)


def progress_for_state(state: TaskState, previous_progress: int = 0) -> int:
    """Derive progress_percent from a state.

    Progress is stage_index / 5 × 100 at stage entry and 100 once completed.
    Failed tasks keep the progress they reached, so progress never decreases
    while a task runs.

    Args:
        state: The state being entered.
        previous_progress: Progress stored before the transition.

    Returns:
        Integer percentage in [0, 100].
    """
    if state is TaskState.COMPLETED:
        return 100
    if state is TaskState.PENDING:
        return 0
    if state is TaskState.FAILED:
        return previous_progress
    stage = STAGE_FOR_STATE[state]
    return STAGE_ORDER.index(stage) * 100 // len(STAGE_ORDER)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class TaskRecord(Base):
    """Durable row for one production task.

    Domain code never touches this class directly: SqlTaskRegistry maps it to
    the pydantic Task record via Task.model_validate(record).

    Attributes:
        id: Opaque task id (caller-supplied or uuid4 hex).
        topic: Topic text (1-500 chars).
        target_duration_seconds: Requested video length (30-1800).
        state: Lifecycle state (indexed, queue queries).
        progress_percent: Derived from state by the registry.
        current_stage: Stage of the current state (None while pending).
        artifacts: JSON document of TaskArtifacts, merged per stage.
        error: JSON document of TaskFailure when failed.
        attempt: Per-stage attempt counter (≥1).
        cancel_requested: Cooperative cancellation flag.
        revision: Optimistic concurrency token, bumped on every mutation.
        created_at: Task creation timestamp (UTC, FIFO ordering).
        updated_at: Last mutation timestamp (UTC).
    """

    __tablename__ = "production_tasks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    topic: Mapped[str] = mapped_column(Text, nullable=False)
    target_duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False)

    # values_callable stores enum.value (lowercase) rather than enum.name
    state: Mapped[TaskState] = mapped_column(
        Enum(
            TaskState,
            native_enum=False,
            name="taskstate",
            length=32,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=TaskState.PENDING,
        index=True,
    )
    progress_percent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_stage: Mapped[PipelineStage | None] = mapped_column(
        Enum(
            PipelineStage,
            native_enum=False,
            name="pipelinestage",
            length=32,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=True,
    )

    # SQLite (tests) stores JSON as TEXT; PostgreSQL as json
    artifacts: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    error: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    cancel_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    __table_args__ = (
        # FIFO claim queries: WHERE state = 'pending' ORDER BY created_at
        Index("ix_production_tasks_state_created_at", "state", "created_at"),
    )

    @validates("state")
    def validate_state_change(self, key: str, value: TaskState) -> TaskState:
        """Validate state assignments made directly on a loaded record.

        The registry writes state through guarded UPDATE statements, so this
        only guards ad-hoc ORM edits (scripts, shells, migrations).

        Raises:
            InvalidStateTransitionError: If the edge is not in VALID_TRANSITIONS.
        """
        # Skip validation on initial record creation (state is None)
        if self.state is None:
            return value
        validate_transition(self.state, value)
        return value

    def __repr__(self) -> str:
        return (
            f"<TaskRecord(id={self.id!s:.8}, state={self.state.value!r}, "
            f"progress={self.progress_percent}, revision={self.revision})>"
        )
