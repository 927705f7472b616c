"""Business logic services for the production pipeline."""

from shortforge.services.pipeline_orchestrator import PipelineOrchestrator, StageOutcome
from shortforge.services.task_registry import (
    InMemoryTaskRegistry,
    SqlTaskRegistry,
    TaskRegistry,
)
from shortforge.services.task_service import (
    cancel_task,
    get_stats,
    get_task_status,
    retry_task,
    submit_task,
)
from shortforge.services.timeline_allocator import allocate_timeline, drop_asset, drop_slice

__all__ = [
    "InMemoryTaskRegistry",
    "PipelineOrchestrator",
    "SqlTaskRegistry",
    "StageOutcome",
    "TaskRegistry",
    "allocate_timeline",
    "cancel_task",
    "drop_asset",
    "drop_slice",
    "get_stats",
    "get_task_status",
    "retry_task",
    "submit_task",
]
