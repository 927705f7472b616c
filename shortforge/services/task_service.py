"""Task submission and status service for the production pipeline.

This module is the pipeline-facing API: the functions a caller (CLI, HTTP
layer, scripts) uses to submit topics, poll progress, cancel and retry.

Architecture:
- Thin functions over the TaskRegistry; all invariants live in the registry
- Submitting or retrying wakes the worker pool (when one is passed) so the
  task is dispatched without waiting for the next poll
- Errors propagate unchanged: ValidationError for bad input,
  TaskNotFoundError for unknown ids, ConflictError for illegal actions
"""

from typing import TYPE_CHECKING

import structlog

from shortforge.exceptions import ConflictError
from shortforge.models import TaskState
from shortforge.schemas.task import QueueStats, Task, TaskFailure, TaskPatch, TaskStatusView
from shortforge.services.task_registry import TaskRegistry

if TYPE_CHECKING:
    from shortforge.workers.pipeline_worker import PipelineWorkerPool

log = structlog.get_logger()


async def submit_task(
    registry: TaskRegistry,
    topic: str,
    target_duration_seconds: int,
    task_id: str | None = None,
    pool: "PipelineWorkerPool | None" = None,
) -> str:
    """Register a production request and return its task id.

    Args:
        registry: Task registry.
        topic: Topic text (1-500 chars).
        target_duration_seconds: Desired video length, 30-1800 seconds.
        task_id: Optional caller-chosen id; generated when omitted.
        pool: Worker pool to wake so the task is dispatched promptly.

    Returns:
        The task id.

    Raises:
        ValidationError: Topic or duration out of bounds.
        DuplicateTaskError: task_id already exists.

    Example:
        >>> task_id = await submit_task(registry, "Daisy care", 120)
    """
    task = await registry.create(topic, target_duration_seconds, task_id=task_id)
    log.info(
        "task_submitted",
        task_id=task.id,
        target_duration_seconds=target_duration_seconds,
    )
    if pool is not None:
        pool.wake()
    return task.id


def _status_view(task: Task) -> TaskStatusView:
    return TaskStatusView(
        task_id=task.id,
        state=task.state,
        progress_percent=task.progress_percent,
        current_stage=task.current_stage,
        error=task.error,
    )


async def get_task_status(registry: TaskRegistry, task_id: str) -> TaskStatusView:
    """Return state, progress, current stage and (when failed) the failure.

    Raises:
        TaskNotFoundError: Unknown id.
    """
    return _status_view(await registry.get(task_id))


async def get_stats(registry: TaskRegistry) -> QueueStats:
    """Return pending/active/completed/failed counts."""
    return await registry.stats()


async def cancel_task(registry: TaskRegistry, task_id: str) -> TaskStatusView:
    """Cancel a task.

    A pending task is failed immediately with error type "cancelled". A
    running task is flagged; the orchestrator fails it before its next stage
    starts (the stage in progress is allowed to finish).

    Raises:
        TaskNotFoundError: Unknown id.
        ConflictError: Task already completed or failed.
    """
    task = await registry.get(task_id)
    if task.state is TaskState.PENDING:
        try:
            task = await registry.transition(
                task_id,
                TaskState.FAILED,
                TaskPatch(
                    error=TaskFailure(
                        stage=None,
                        error_type="cancelled",
                        message="Cancelled before processing started",
                    )
                ),
                expected_state=TaskState.PENDING,
            )
            log.info("task_cancelled", task_id=task_id, state="pending")
            return _status_view(task)
        except ConflictError:
            # Claimed between the read and the write; fall through to the flag
            log.info("task_cancel_raced_claim", task_id=task_id)

    task = await registry.request_cancel(task_id)
    return _status_view(task)


async def retry_task(
    registry: TaskRegistry,
    task_id: str,
    pool: "PipelineWorkerPool | None" = None,
) -> TaskStatusView:
    """Move a completed or failed task back to pending for a fresh run.

    Resets attempt to 1 and clears artifacts and the failure record.

    Raises:
        TaskNotFoundError: Unknown id.
        ConflictError: Task is still pending or running.
    """
    task = await registry.requeue(task_id)
    if pool is not None:
        pool.wake()
    return _status_view(task)
