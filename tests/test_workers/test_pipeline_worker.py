"""Tests for the pipeline worker pool and the worker entry point."""

import asyncio
import signal
from datetime import timedelta

import pytest
import pytest_asyncio

from shortforge.clients.mock import MockScriptGenerator
from shortforge.models import PipelineStage, TaskState, utcnow
from shortforge.schemas.task import TaskFailure, TaskPatch
from shortforge.services.pipeline_orchestrator import PipelineOrchestrator
from shortforge.services.task_service import retry_task, submit_task
from shortforge.utils.filesystem import get_task_workspace
from shortforge.workers import pipeline_worker
from shortforge.workers.pipeline_worker import (
    INTERRUPTED_ERROR_TYPE,
    PipelineWorkerPool,
    main,
    signal_handler,
)
from tests.support.fakes import make_collaborators


class ConcurrencyRecorder(MockScriptGenerator):
    """Script generator that records how many pipelines overlap."""

    def __init__(self):
        self.active = 0
        self.max_active = 0
        self.topics: list[str] = []

    async def generate_script(self, topic: str, target_words: int) -> str:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.topics.append(topic)
        try:
            await asyncio.sleep(0.02)
            return await super().generate_script(topic, target_words)
        finally:
            self.active -= 1


@pytest.fixture
def recorder() -> ConcurrencyRecorder:
    return ConcurrencyRecorder()


@pytest.fixture
def orchestrator(memory_registry, recorder, recording_sleep, fast_settings) -> PipelineOrchestrator:
    return PipelineOrchestrator(
        memory_registry,
        make_collaborators(audio_duration_seconds=None, script=recorder),
        fast_settings,
        sleep=recording_sleep,
    )


@pytest_asyncio.fixture
async def pool(memory_registry, orchestrator):
    pool = PipelineWorkerPool(memory_registry, orchestrator, concurrency=2, poll_interval_seconds=0.01)
    yield pool
    await pool.stop()


class TestPipelineWorkerPool:
    @pytest.mark.asyncio
    async def test_processes_all_pending_tasks(self, memory_registry, pool, recorder):
        task_ids = [
            await submit_task(memory_registry, f"Topic number {i}", 60, pool=pool) for i in range(5)
        ]

        await pool.start()
        await asyncio.wait_for(pool.wait_until_idle(), timeout=10)

        for task_id in task_ids:
            assert (await memory_registry.get(task_id)).state is TaskState.COMPLETED
        assert sorted(recorder.topics) == sorted(f"Topic number {i}" for i in range(5))

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, memory_registry, pool, recorder):
        for i in range(6):
            await submit_task(memory_registry, f"Topic number {i}", 60)

        await pool.start()
        await asyncio.wait_for(pool.wait_until_idle(), timeout=10)

        assert recorder.max_active == 2

    @pytest.mark.asyncio
    async def test_each_task_runs_once(self, memory_registry, pool, recorder):
        await submit_task(memory_registry, "Daisy care", 60)

        await pool.start()
        for _ in range(5):
            pool.wake()
            await asyncio.sleep(0)
        await asyncio.wait_for(pool.wait_until_idle(), timeout=10)

        assert recorder.topics == ["Daisy care"]

    @pytest.mark.asyncio
    async def test_tasks_submitted_after_start_are_picked_up(self, memory_registry, pool):
        await pool.start()

        task_id = await submit_task(memory_registry, "Daisy care", 60, pool=pool)
        await asyncio.wait_for(pool.wait_until_idle(), timeout=10)

        assert (await memory_registry.get(task_id)).state is TaskState.COMPLETED

    @pytest.mark.asyncio
    async def test_start_and_stop_are_idempotent(self, pool):
        await pool.start()
        await pool.start()
        assert pool.is_running

        await pool.stop()
        await pool.stop()
        assert not pool.is_running
        assert pool.active_count == 0

    @pytest.mark.asyncio
    async def test_pipeline_error_does_not_kill_worker(self, memory_registry, mocker):
        orchestrator = mocker.Mock()
        orchestrator.run = mocker.AsyncMock(side_effect=RuntimeError("boom"))
        pool = PipelineWorkerPool(memory_registry, orchestrator, concurrency=1)

        await pool._process("task-1", 0)

        orchestrator.run.assert_awaited_once_with("task-1")

    def test_concurrency_floor(self, memory_registry, orchestrator):
        assert PipelineWorkerPool(memory_registry, orchestrator, concurrency=0).concurrency == 1


class BlockingScriptGenerator:
    """Script generator that never returns, standing in for a worker that dies mid-stage."""

    def __init__(self):
        self.started = asyncio.Event()

    async def generate_script(self, topic: str, target_words: int) -> str:
        self.started.set()
        await asyncio.Event().wait()
        return ""


async def _claim(registry, topic: str = "Daisy care") -> str:
    """Create a task and claim it the way a worker that then vanished would."""
    task = await registry.create(topic, 60)
    await registry.transition(task.id, TaskState.SCRIPT_GENERATING, expected_state=TaskState.PENDING)
    return task.id


async def _finish(registry, task_id: str, state: TaskState) -> None:
    if state is TaskState.FAILED:
        failure = TaskFailure(error_type="timeout", message="slow", stage=PipelineStage.SCRIPT_GENERATING)
        await registry.transition(
            task_id, TaskState.FAILED, TaskPatch(error=failure), expected_state=TaskState.SCRIPT_GENERATING
        )
        return
    path = [
        TaskState.SCRIPT_GENERATING,
        TaskState.AUDIO_GENERATING,
        TaskState.VISUALS_PROCESSING,
        TaskState.VIDEO_ASSEMBLING,
        TaskState.THUMBNAIL_GENERATING,
        TaskState.COMPLETED,
    ]
    for current, nxt in zip(path, path[1:]):
        await registry.transition(task_id, nxt, expected_state=current)


class TestInterruptedTasks:
    @pytest.mark.asyncio
    async def test_non_graceful_stop_fails_running_tasks(
        self, memory_registry, recording_sleep, fast_settings
    ):
        script = BlockingScriptGenerator()
        orchestrator = PipelineOrchestrator(
            memory_registry, make_collaborators(script=script), fast_settings, sleep=recording_sleep
        )
        pool = PipelineWorkerPool(memory_registry, orchestrator, concurrency=1, poll_interval_seconds=0.01)
        task_id = await submit_task(memory_registry, "Daisy care", 60, pool=pool)

        await pool.start()
        await asyncio.wait_for(script.started.wait(), timeout=5)
        await pool.stop(graceful=False)

        task = await memory_registry.get(task_id)
        assert task.state is TaskState.FAILED
        assert task.error.error_type == INTERRUPTED_ERROR_TYPE
        assert task.error.stage is PipelineStage.SCRIPT_GENERATING
        assert task.error.retryable is True

        status = await retry_task(memory_registry, task_id)
        assert status.state is TaskState.PENDING

    @pytest.mark.asyncio
    async def test_stale_running_task_is_released(self, registry, orchestrator):
        stale_id = await _claim(registry, "Stale topic")
        pool = PipelineWorkerPool(registry, orchestrator, stale_after_seconds=60)

        assert await pool.release_stale_tasks() == []
        released = await pool.release_stale_tasks(now=utcnow() + timedelta(minutes=5))

        assert released == [stale_id]
        task = await registry.get(stale_id)
        assert task.state is TaskState.FAILED
        assert task.error.error_type == INTERRUPTED_ERROR_TYPE
        assert task.progress_percent == 0
        assert (await retry_task(registry, stale_id)).state is TaskState.PENDING

    @pytest.mark.asyncio
    async def test_tasks_running_in_this_pool_are_not_released(self, memory_registry, orchestrator):
        task_id = await _claim(memory_registry)
        pool = PipelineWorkerPool(memory_registry, orchestrator, stale_after_seconds=60)
        pool._running.add(task_id)

        assert await pool.release_stale_tasks(now=utcnow() + timedelta(hours=1)) == []
        assert (await memory_registry.get(task_id)).state is TaskState.SCRIPT_GENERATING

    @pytest.mark.asyncio
    async def test_dispatcher_sweeps_orphaned_claims(self, memory_registry, orchestrator):
        orphan_id = await _claim(memory_registry)
        pool = PipelineWorkerPool(
            memory_registry, orchestrator, poll_interval_seconds=0.01, stale_after_seconds=0
        )

        await pool.start()
        try:
            for _ in range(500):
                if (await memory_registry.get(orphan_id)).state is TaskState.FAILED:
                    break
                await asyncio.sleep(0.01)
        finally:
            await pool.stop()

        assert (await memory_registry.get(orphan_id)).error.error_type == INTERRUPTED_ERROR_TYPE


class TestWorkspaceCleanup:
    @pytest.mark.asyncio
    async def test_expired_workspaces_of_finished_tasks_are_removed(
        self, registry, orchestrator, tmp_path
    ):
        done_id = await _claim(registry, "Done")
        await _finish(registry, done_id, TaskState.COMPLETED)
        failed_id = await _claim(registry, "Failed")
        await _finish(registry, failed_id, TaskState.FAILED)
        running_id = await _claim(registry, "Running")
        for task_id in (done_id, failed_id, running_id):
            get_task_workspace(task_id, tmp_path)
        pool = PipelineWorkerPool(registry, orchestrator, retention_days=7, workspace_root=tmp_path)

        assert await pool.cleanup_workspaces(now=utcnow() + timedelta(days=1)) == []
        removed = await pool.cleanup_workspaces(now=utcnow() + timedelta(days=8))

        assert sorted(removed) == sorted([done_id, failed_id])
        assert not (tmp_path / "tasks" / done_id).exists()
        assert not (tmp_path / "tasks" / failed_id).exists()
        assert (tmp_path / "tasks" / running_id).is_dir()

    @pytest.mark.asyncio
    async def test_zero_retention_keeps_everything(self, memory_registry, orchestrator, tmp_path):
        task_id = await _claim(memory_registry)
        await _finish(memory_registry, task_id, TaskState.COMPLETED)
        get_task_workspace(task_id, tmp_path)
        pool = PipelineWorkerPool(memory_registry, orchestrator, retention_days=0, workspace_root=tmp_path)

        assert await pool.cleanup_workspaces(now=utcnow() + timedelta(days=365)) == []
        assert (tmp_path / "tasks" / task_id).is_dir()


class TestSignalHandler:
    def test_sets_flag_and_event(self, monkeypatch):
        monkeypatch.setattr(pipeline_worker, "SHUTDOWN_REQUESTED", False)
        stop_event = asyncio.Event()

        signal_handler(signal.SIGTERM, stop_event)

        assert pipeline_worker.SHUTDOWN_REQUESTED is True
        assert stop_event.is_set()

    def test_event_is_optional(self, monkeypatch):
        monkeypatch.setattr(pipeline_worker, "SHUTDOWN_REQUESTED", False)
        signal_handler(signal.SIGINT)
        assert pipeline_worker.SHUTDOWN_REQUESTED is True


class TestMain:
    @pytest.mark.asyncio
    async def test_single_task_mode(self, memory_registry, monkeypatch, mocker):
        configure = mocker.patch("shortforge.workers.pipeline_worker.configure_logging")
        monkeypatch.setenv("COLLABORATOR_BACKEND", "mock")
        monkeypatch.setenv("RETRY_BASE_DELAY_SECONDS", "0")
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        task_id = await submit_task(memory_registry, "Daisy care", 60)

        await main(["--task-id", task_id], registry=memory_registry)

        task = await memory_registry.get(task_id)
        assert task.state is TaskState.COMPLETED
        assert task.artifacts.video_ref.startswith("mock://render/")
        configure.assert_called_once_with("INFO")

    @pytest.mark.asyncio
    async def test_collaborators_are_closed_on_exit(self, memory_registry, monkeypatch, mocker):
        mocker.patch("shortforge.workers.pipeline_worker.configure_logging")
        collaborators = make_collaborators()
        collaborators.script.close = mocker.AsyncMock()
        mocker.patch(
            "shortforge.workers.pipeline_worker.build_collaborators", return_value=collaborators
        )
        monkeypatch.setenv("RETRY_BASE_DELAY_SECONDS", "0")
        task_id = await submit_task(memory_registry, "Daisy care", 60)

        await main(["--task-id", task_id], registry=memory_registry)

        collaborators.script.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_maintenance_mode_runs_both_sweeps_once(self, memory_registry, mocker):
        mocker.patch("shortforge.workers.pipeline_worker.configure_logging")
        mocker.patch("shortforge.workers.pipeline_worker.build_collaborators", return_value=make_collaborators())
        release = mocker.patch.object(
            PipelineWorkerPool, "release_stale_tasks", mocker.AsyncMock(return_value=["t1"])
        )
        cleanup = mocker.patch.object(
            PipelineWorkerPool, "cleanup_workspaces", mocker.AsyncMock(return_value=[])
        )

        await main(["--maintenance"], registry=memory_registry)

        release.assert_awaited_once()
        cleanup.assert_awaited_once()
