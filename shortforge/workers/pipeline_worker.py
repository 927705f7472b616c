"""Pipeline Worker Pool for processing production tasks.

This module implements the bounded worker pool that dispatches pending tasks
to the PipelineOrchestrator, plus the worker process entry point.

Key Responsibilities:
- Poll the registry for pending tasks (FIFO by creation) into an asyncio.Queue
- Run up to N pipelines concurrently (default 3, WORKER_CONCURRENCY)
- Guarantee at most one execution per task id (in-flight set + the
  orchestrator's guarded claim)
- Graceful shutdown on SIGTERM/SIGINT: finish running pipelines, start no
  new ones
- Fail orphaned running tasks as "interrupted": on a non-graceful stop, and
  via a dispatcher sweep for tasks whose worker died (no update for
  STALE_TASK_TIMEOUT_SECONDS)
- Delete the workspaces of tasks finished more than WORKSPACE_RETENTION_DAYS
  ago (at most once per CLEANUP_INTERVAL_SECONDS)

Architecture Pattern: "Dispatcher + Workers"
- One dispatcher coroutine polls every poll_interval_seconds, or sooner when
  wake() is called (task submitted or retried)
- N worker coroutines take task ids off the queue and run the pipeline
- The registry is the only shared state; a task that another process
  claimed first is skipped when the claim raises ConflictError

Usage:
    # Run single task (testing)
    python -m shortforge.workers.pipeline_worker --task-id abc123

    # Run worker pool (production)
    python -m shortforge.workers.pipeline_worker

    # Release stale tasks and clean old workspaces, then exit
    python -m shortforge.workers.pipeline_worker --maintenance

Safety:
    - The dispatcher never crashes (logs and keeps polling)
    - Individual pipeline errors are logged and don't stop the worker
"""

import argparse
import asyncio
import signal
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from shortforge.clients.factory import build_collaborators
from shortforge.config import (
    PipelineSettings,
    get_log_level,
    get_stale_task_timeout,
    get_worker_concurrency,
    get_workspace_retention_days,
)
from shortforge.database import dispose_engine, get_session_factory
from shortforge.exceptions import ConflictError
from shortforge.models import RUNNING_STATES, TERMINAL_STATES, TaskState, utcnow
from shortforge.schemas.task import Task, TaskFailure, TaskPatch
from shortforge.services.pipeline_orchestrator import PipelineOrchestrator
from shortforge.services.task_registry import SqlTaskRegistry, TaskRegistry
from shortforge.utils.filesystem import remove_task_workspace
from shortforge.utils.logging import configure_logging, get_logger

log = get_logger(__name__)

# Global shutdown flag for graceful shutdown
SHUTDOWN_REQUESTED = False

INTERRUPTED_ERROR_TYPE = "interrupted"
CLEANUP_INTERVAL_SECONDS = 3600.0


class PipelineWorkerPool:
    """Bounded pool of pipeline workers fed by a polling dispatcher.

    Args:
        registry: Task registry to poll and update.
        orchestrator: Orchestrator shared by all workers.
        concurrency: Number of pipelines that may run at once.
        poll_interval_seconds: Dispatcher poll period when not woken.
        stale_after_seconds: A running task not updated for this long, and
            not running in this pool, is failed as interrupted
            (STALE_TASK_TIMEOUT_SECONDS when None).
        retention_days: Finished tasks older than this lose their workspace;
            0 disables cleanup (WORKSPACE_RETENTION_DAYS when None).
        workspace_root: Root holding the task workspaces (WORKSPACE_ROOT
            when None).
        cleanup_interval_seconds: Minimum time between workspace cleanups.

    Example:
        >>> pool = PipelineWorkerPool(registry, orchestrator, concurrency=3)
        >>> await pool.start()
        >>> task_id = await submit_task(registry, "Daisy care", 120, pool=pool)
        >>> await pool.wait_until_idle()
        >>> await pool.stop()
    """

    def __init__(
        self,
        registry: TaskRegistry,
        orchestrator: PipelineOrchestrator,
        concurrency: int = 3,
        poll_interval_seconds: float = 1.0,
        stale_after_seconds: float | None = None,
        retention_days: int | None = None,
        workspace_root: Path | str | None = None,
        cleanup_interval_seconds: float = CLEANUP_INTERVAL_SECONDS,
    ):
        self.registry = registry
        self.orchestrator = orchestrator
        self.concurrency = max(1, int(concurrency))
        self.poll_interval_seconds = poll_interval_seconds
        self.stale_after_seconds = (
            stale_after_seconds if stale_after_seconds is not None else get_stale_task_timeout()
        )
        self.retention_days = (
            retention_days if retention_days is not None else get_workspace_retention_days()
        )
        self.workspace_root = workspace_root
        self.cleanup_interval_seconds = cleanup_interval_seconds

        self._queue: asyncio.Queue[str] = asyncio.Queue()
        # Ids queued or running in this pool
        self._in_flight: set[str] = set()
        self._running: set[str] = set()
        self._wake_event = asyncio.Event()
        self._dispatcher: asyncio.Task | None = None
        self._workers: list[asyncio.Task] = []
        self._stopping = False
        self._next_cleanup = 0.0

    @property
    def is_running(self) -> bool:
        return self._dispatcher is not None

    @property
    def active_count(self) -> int:
        """Number of pipelines currently executing."""
        return len(self._running)

    async def start(self) -> None:
        """Start the dispatcher and the worker coroutines (idempotent)."""
        if self._dispatcher is not None:
            return
        self._stopping = False
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"pipeline-worker-{index}")
            for index in range(self.concurrency)
        ]
        self._dispatcher = asyncio.create_task(self._dispatch_loop(), name="pipeline-dispatcher")
        log.info(
            "worker_pool_started",
            concurrency=self.concurrency,
            poll_interval_seconds=self.poll_interval_seconds,
        )

    def wake(self) -> None:
        """Make the dispatcher poll now instead of at the next interval."""
        self._wake_event.set()

    async def stop(self, graceful: bool = True) -> None:
        """Stop dispatching and shut the workers down.

        Args:
            graceful: Let running pipelines finish (queued-but-unstarted
                tasks stay pending in the registry). When False, running
                pipelines are cancelled immediately and their tasks are
                failed as interrupted, so retry_task can pick them up.
        """
        if self._dispatcher is None:
            return
        self._stopping = True

        self._dispatcher.cancel()
        await asyncio.gather(self._dispatcher, return_exceptions=True)
        self._dispatcher = None

        # Drop queued ids that no worker has started; they remain pending
        while not self._queue.empty():
            task_id = self._queue.get_nowait()
            self._in_flight.discard(task_id)
            self._queue.task_done()

        if graceful:
            await self._queue.join()

        interrupted = [] if graceful else sorted(self._running)
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

        for task_id in interrupted:
            task = await self.registry.get(task_id)
            if task.state in RUNNING_STATES:
                await self._fail_interrupted(task, "Worker stopped before the pipeline finished")
        log.info("worker_pool_stopped", graceful=graceful, interrupted=len(interrupted))

    async def wait_until_idle(self, check_interval_seconds: float = 0.01) -> None:
        """Wait until no task is pending, queued or running.

        Only meaningful while the pool is running; with a stopped pool and
        pending tasks it waits forever (wrap it in asyncio.wait_for).
        """
        while True:
            await self._queue.join()
            pending = await self.registry.list_tasks(states=[TaskState.PENDING], limit=1)
            if not pending and not self._in_flight:
                return
            self.wake()
            await asyncio.sleep(check_interval_seconds)

    async def _dispatch_loop(self) -> None:
        log.info("dispatcher_started")
        while not self._stopping:
            try:
                await self._run_maintenance()
                await self._dispatch_pending()
            except Exception as e:
                log.error(
                    "dispatcher_error",
                    error_type=type(e).__name__,
                    error_message=str(e),
                )

            try:
                await asyncio.wait_for(self._wake_event.wait(), timeout=self.poll_interval_seconds)
            except asyncio.TimeoutError:
                pass
            self._wake_event.clear()

    async def _run_maintenance(self) -> None:
        await self.release_stale_tasks()
        if self.retention_days and time.monotonic() >= self._next_cleanup:
            self._next_cleanup = time.monotonic() + self.cleanup_interval_seconds
            await self.cleanup_workspaces()

    async def release_stale_tasks(self, now: datetime | None = None) -> list[str]:
        """Fail running tasks whose worker is gone.

        A task counts as orphaned when it sits in a running state, is not
        running in this pool, and has not been updated for
        stale_after_seconds (its worker crashed, was killed, or was stopped
        without a graceful shutdown). The failure is recorded as
        "interrupted" so retry_task can requeue it.

        Args:
            now: Reference time (defaults to the current UTC time).

        Returns:
            Ids of the tasks that were failed.
        """
        cutoff = (now or utcnow()) - timedelta(seconds=self.stale_after_seconds)
        released: list[str] = []
        for task in await self.registry.list_tasks(states=RUNNING_STATES):
            if task.id in self._running or task.updated_at > cutoff:
                continue
            message = f"No progress for over {self.stale_after_seconds:.0f}s; worker presumed dead"
            if await self._fail_interrupted(task, message):
                released.append(task.id)

        if released:
            log.warning("stale_tasks_released", count=len(released), task_ids=released)
        return released

    async def cleanup_workspaces(self, now: datetime | None = None) -> list[str]:
        """Delete the workspaces of tasks finished more than retention_days ago.

        Returns:
            Ids of the tasks whose workspace was removed.
        """
        if not self.retention_days:
            return []
        cutoff = (now or utcnow()) - timedelta(days=self.retention_days)
        removed: list[str] = []
        for task in await self.registry.list_tasks(states=TERMINAL_STATES):
            if task.updated_at > cutoff:
                continue
            if await asyncio.to_thread(remove_task_workspace, task.id, self.workspace_root):
                removed.append(task.id)

        if removed:
            log.info(
                "workspaces_cleaned",
                count=len(removed),
                retention_days=self.retention_days,
            )
        return removed

    async def _fail_interrupted(self, task: Task, message: str) -> bool:
        failure = TaskFailure(
            stage=task.current_stage,
            error_type=INTERRUPTED_ERROR_TYPE,
            message=message,
            retryable=True,
            attempt=task.attempt,
        )
        try:
            await self.registry.transition(
                task.id,
                TaskState.FAILED,
                TaskPatch(error=failure),
                expected_state=task.state,
                expected_revision=task.revision,
            )
        except ConflictError:
            # The task moved on, so whoever runs it is alive
            return False
        log.warning(
            "task_interrupted",
            task_id=task.id,
            stage=task.current_stage.value if task.current_stage else None,
            reason=message,
        )
        return True

    async def _dispatch_pending(self) -> None:
        """Queue every pending task not already in flight, oldest first."""
        pending = await self.registry.list_tasks(states=[TaskState.PENDING])
        for task in pending:
            if task.id in self._in_flight:
                continue
            self._in_flight.add(task.id)
            self._queue.put_nowait(task.id)
            log.debug("task_dispatched", task_id=task.id)

    async def _worker(self, index: int) -> None:
        while True:
            task_id = await self._queue.get()
            try:
                if self._stopping:
                    continue
                self._running.add(task_id)
                await self._process(task_id, index)
            finally:
                self._running.discard(task_id)
                self._in_flight.discard(task_id)
                self._queue.task_done()

    async def _process(self, task_id: str, worker_index: int) -> None:
        log.info("task_processing_started", task_id=task_id, worker=worker_index)
        try:
            task = await self.orchestrator.run(task_id)
        except Exception as e:
            log.error(
                "task_processing_error",
                task_id=task_id,
                error_type=type(e).__name__,
                error_message=str(e),
                exc_info=True,
            )
            return
        log.info(
            "task_processing_finished",
            task_id=task_id,
            state=task.state.value if task is not None else None,
        )


def signal_handler(signum: int, stop_event: asyncio.Event | None = None) -> None:
    """Handle SIGTERM/SIGINT for graceful shutdown.

    Sets the global shutdown flag and the pool's stop event; running
    pipelines finish before the process exits.

    Args:
        signum: Signal number received
        stop_event: Event main() waits on before stopping the pool
    """
    global SHUTDOWN_REQUESTED
    SHUTDOWN_REQUESTED = True
    log.info("shutdown_signal_received", signal=signum)
    if stop_event is not None:
        stop_event.set()


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="shortforge-worker",
        description="Run the short video production worker pool.",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--task-id", help="Run a single task and exit (testing mode)")
    mode.add_argument(
        "--maintenance",
        action="store_true",
        help="Release stale tasks and delete expired workspaces, then exit",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Concurrent pipelines (default: WORKER_CONCURRENCY or 3)",
    )
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None, registry: Any = None) -> None:
    """Entry point for the worker process.

    Supports three modes:
    1. Single task processing (testing): --task-id abc123
    2. Maintenance pass: --maintenance
    3. Worker pool (production): no arguments

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:]).
        registry: Registry override; the SQL registry is used when omitted.
    """
    configure_logging(get_log_level())
    args = _parse_args(argv)

    owns_engine = registry is None
    if registry is None:
        registry = SqlTaskRegistry(get_session_factory())
    collaborators = build_collaborators()
    orchestrator = PipelineOrchestrator(registry, collaborators, PipelineSettings.from_env())

    try:
        if args.task_id:
            log.info("single_task_mode", task_id=args.task_id)
            await orchestrator.run(args.task_id)
            return

        pool = PipelineWorkerPool(
            registry,
            orchestrator,
            concurrency=args.concurrency or get_worker_concurrency(),
        )

        if args.maintenance:
            released = await pool.release_stale_tasks()
            removed = await pool.cleanup_workspaces()
            log.info("maintenance_completed", released=len(released), workspaces_removed=len(removed))
            return

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(signum, signal_handler, signum, stop_event)

        await pool.start()
        await stop_event.wait()
        await pool.stop(graceful=True)
        log.info("worker_stopped", reason="shutdown_requested")
    finally:
        await collaborators.aclose()
        if owns_engine:
            await dispose_engine()


def run() -> None:
    """Console script entry point (shortforge-worker)."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
