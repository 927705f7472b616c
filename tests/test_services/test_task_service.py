"""Tests for task submission, status polling, cancellation and retry."""

import pytest

from shortforge.exceptions import ConflictError, DuplicateTaskError, TaskNotFoundError, ValidationError
from shortforge.models import PipelineStage, TaskState
from shortforge.schemas.task import TaskFailure, TaskPatch
from shortforge.services.task_service import (
    cancel_task,
    get_stats,
    get_task_status,
    retry_task,
    submit_task,
)


async def _fail(registry, task_id: str) -> None:
    await registry.transition(task_id, TaskState.SCRIPT_GENERATING, expected_state=TaskState.PENDING)
    await registry.transition(
        task_id,
        TaskState.FAILED,
        TaskPatch(
            error=TaskFailure(
                stage=PipelineStage.SCRIPT_GENERATING,
                error_type="unauthorized",
                message="401 Unauthorized",
            )
        ),
        expected_state=TaskState.SCRIPT_GENERATING,
    )


class TestSubmitTask:
    @pytest.mark.asyncio
    async def test_submit_returns_pending_task_id(self, registry):
        task_id = await submit_task(registry, "Daisy care", 120)

        status = await get_task_status(registry, task_id)
        assert status.task_id == task_id
        assert status.state is TaskState.PENDING
        assert status.progress_percent == 0
        assert status.current_stage is None
        assert status.error is None

    @pytest.mark.asyncio
    async def test_caller_chosen_id(self, registry):
        assert await submit_task(registry, "Daisy care", 120, task_id="daisy-1") == "daisy-1"

        with pytest.raises(DuplicateTaskError):
            await submit_task(registry, "Daisy care", 120, task_id="daisy-1")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("topic", "duration"),
        [("", 120), ("   ", 120), ("x" * 501, 120), ("Daisy care", 29), ("Daisy care", 1801)],
    )
    async def test_invalid_requests_are_rejected(self, memory_registry, topic, duration):
        with pytest.raises(ValidationError):
            await submit_task(memory_registry, topic, duration)
        assert (await get_stats(memory_registry)).pending == 0

    @pytest.mark.asyncio
    async def test_submit_wakes_pool(self, memory_registry, mocker):
        pool = mocker.Mock()

        await submit_task(memory_registry, "Daisy care", 120, pool=pool)

        pool.wake.assert_called_once_with()


class TestStatusAndStats:
    @pytest.mark.asyncio
    async def test_unknown_task(self, registry):
        with pytest.raises(TaskNotFoundError):
            await get_task_status(registry, "missing")

    @pytest.mark.asyncio
    async def test_failed_status_carries_failure(self, registry):
        task_id = await submit_task(registry, "Daisy care", 120)
        await _fail(registry, task_id)

        status = await get_task_status(registry, task_id)

        assert status.state is TaskState.FAILED
        assert status.current_stage is PipelineStage.SCRIPT_GENERATING
        assert status.error.error_type == "unauthorized"

    @pytest.mark.asyncio
    async def test_stats_count_each_bucket(self, registry):
        await submit_task(registry, "Pending topic", 60)
        running = await submit_task(registry, "Running topic", 60)
        failed = await submit_task(registry, "Failed topic", 60)
        await registry.transition(running, TaskState.SCRIPT_GENERATING, expected_state=TaskState.PENDING)
        await _fail(registry, failed)

        stats = await get_stats(registry)

        assert (stats.pending, stats.active, stats.completed, stats.failed) == (1, 1, 0, 1)


class TestCancelTask:
    @pytest.mark.asyncio
    async def test_pending_task_fails_immediately(self, registry):
        task_id = await submit_task(registry, "Daisy care", 120)

        status = await cancel_task(registry, task_id)

        assert status.state is TaskState.FAILED
        assert status.error.error_type == "cancelled"
        assert status.error.stage is None

    @pytest.mark.asyncio
    async def test_running_task_is_flagged(self, registry):
        task_id = await submit_task(registry, "Daisy care", 120)
        await registry.transition(task_id, TaskState.SCRIPT_GENERATING, expected_state=TaskState.PENDING)

        status = await cancel_task(registry, task_id)

        assert status.state is TaskState.SCRIPT_GENERATING
        assert (await registry.get(task_id)).cancel_requested is True

    @pytest.mark.asyncio
    async def test_terminal_task_cannot_be_cancelled(self, registry):
        task_id = await submit_task(registry, "Daisy care", 120)
        await _fail(registry, task_id)

        with pytest.raises(ConflictError):
            await cancel_task(registry, task_id)

    @pytest.mark.asyncio
    async def test_unknown_task(self, memory_registry):
        with pytest.raises(TaskNotFoundError):
            await cancel_task(memory_registry, "missing")


class TestRetryTask:
    @pytest.mark.asyncio
    async def test_failed_task_returns_to_pending(self, registry, mocker):
        pool = mocker.Mock()
        task_id = await submit_task(registry, "Daisy care", 120)
        await _fail(registry, task_id)

        status = await retry_task(registry, task_id, pool=pool)

        assert status.state is TaskState.PENDING
        assert status.progress_percent == 0
        assert status.error is None
        task = await registry.get(task_id)
        assert task.attempt == 1
        assert task.cancel_requested is False
        pool.wake.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_pending_task_cannot_be_retried(self, registry):
        task_id = await submit_task(registry, "Daisy care", 120)

        with pytest.raises(ConflictError):
            await retry_task(registry, task_id)
