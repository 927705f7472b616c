"""Short-form video production pipeline.

Turns a topic and a target duration into a narrated video plus thumbnail:
script → narration → stock visuals laid over the audio → render →
thumbnail. Task state lives in a registry (PostgreSQL in production) and a
bounded worker pool drives each task through the stages.
"""

from shortforge.exceptions import (
    CollaboratorError,
    ConflictError,
    PipelineError,
    TaskNotFoundError,
    ValidationError,
)
from shortforge.models import Base, PipelineStage, TaskRecord, TaskState

__all__ = [
    "Base",
    "CollaboratorError",
    "ConflictError",
    "PipelineError",
    "PipelineStage",
    "TaskNotFoundError",
    "TaskRecord",
    "TaskState",
    "ValidationError",
]
