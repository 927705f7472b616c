"""Pydantic schemas for production tasks.

This module defines the pydantic v2 records the registry hands out. Both
registry implementations return Task instances; the durable one builds them
from TaskRecord rows via model_validate (from_attributes).

Schema Naming Convention:
    - Task: Full task record as stored by the registry
    - TaskArtifacts: Per-stage outputs, each optional until produced
    - TaskFailure: Recorded reason for a failed task
    - TaskPatch: Partial update applied together with a state transition
    - TaskStatusView: Read model returned to callers polling a task
    - QueueStats: Counts per lifecycle bucket
"""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shortforge.models import PipelineStage, TaskState
from shortforge.schemas.media import AudioAsset, VideoMetadata, VisualSlice


class TaskArtifacts(BaseModel):
    """Outputs of each stage. A field is set only when its stage succeeded."""

    model_config = ConfigDict(from_attributes=True)

    script_text: str | None = None
    audio: AudioAsset | None = None
    visual_slices: list[VisualSlice] | None = None
    video_ref: str | None = None
    thumbnail_ref: str | None = None
    metadata: VideoMetadata | None = None

    def merged_with(self, other: "TaskArtifacts") -> "TaskArtifacts":
        """Return a copy with every field ``other`` has set overriding this one."""
        updates = {
            name: getattr(other, name)
            for name in other.model_fields_set
            if getattr(other, name) is not None
        }
        return self.model_copy(update=updates)


class TaskFailure(BaseModel):
    """Why and where a task failed.

    Attributes:
        stage: Stage that was running (None when failed before claiming).
        error_type: Classification label (e.g. "timeout", "rate_limited",
            "allocation_error", "cancelled").
        message: Human-readable reason.
        retryable: Whether the last error was classified as transient.
        attempt: Attempt number on which the task gave up.
    """

    model_config = ConfigDict(from_attributes=True)

    stage: PipelineStage | None = None
    error_type: str
    message: str
    retryable: bool = False
    attempt: int = Field(1, ge=1)


class TaskPatch(BaseModel):
    """Fields a transition may change alongside the state.

    progress_percent and current_stage are deliberately absent: the registry
    derives them from the new state.
    """

    artifacts: TaskArtifacts | None = None
    attempt: int | None = Field(None, ge=1)
    error: TaskFailure | None = None


class Task(BaseModel):
    """One production request as held by the registry."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    topic: str
    target_duration_seconds: int
    state: TaskState = TaskState.PENDING
    progress_percent: int = Field(0, ge=0, le=100)
    current_stage: PipelineStage | None = None
    artifacts: TaskArtifacts = Field(default_factory=TaskArtifacts)
    error: TaskFailure | None = None
    attempt: int = Field(1, ge=1)
    cancel_requested: bool = False
    revision: int = 0
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # SQLite hands back naive datetimes; every stored timestamp is UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def is_terminal(self) -> bool:
        return self.state in (TaskState.COMPLETED, TaskState.FAILED)


class TaskStatusView(BaseModel):
    """What a polling caller sees for one task."""

    task_id: str
    state: TaskState
    progress_percent: int
    current_stage: PipelineStage | None = None
    error: TaskFailure | None = None


class QueueStats(BaseModel):
    """Task counts per lifecycle bucket."""

    pending: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
