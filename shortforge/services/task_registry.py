"""Task registry: the single owner of task state.

Every mutation of a task goes through a guarded operation here. Callers state
the state (and optionally the revision) they believe the task is in; the
registry applies the change only if that belief still holds, otherwise it
raises ConflictError and leaves the task untouched. The registry never retries
on a caller's behalf.

Implementations:
    - InMemoryTaskRegistry: dict + per-id asyncio.Lock (tests, dev, single process)
    - SqlTaskRegistry: async SQLAlchemy, compare-and-set
      UPDATE ... WHERE id = ? AND state = ? AND revision = ?

Derived fields:
    progress_percent and current_stage are computed from the new state on
    every transition. A TaskPatch cannot set them.
"""

import asyncio
import re
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortforge.constants import (
    MAX_TARGET_DURATION_SECONDS,
    MAX_TOPIC_LENGTH,
    MIN_TARGET_DURATION_SECONDS,
)
from shortforge.exceptions import (
    ConflictError,
    DuplicateTaskError,
    TaskNotFoundError,
    ValidationError,
)
from shortforge.models import (
    RUNNING_STATES,
    TERMINAL_STATES,
    TaskRecord,
    TaskState,
    progress_for_state,
    stage_for_state,
    utcnow,
    validate_transition,
)
from shortforge.schemas.task import QueueStats, Task, TaskArtifacts, TaskPatch

log = structlog.get_logger()

MAX_TASK_ID_LENGTH = 64
_TASK_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")


def validate_request(topic: Any, target_duration_seconds: Any) -> str:
    """Validate a production request and return the normalized topic.

    Args:
        topic: Topic text; must be non-empty after stripping, ≤500 chars.
        target_duration_seconds: Integer in [30, 1800].

    Returns:
        Stripped topic.

    Raises:
        ValidationError: If either value is out of bounds.
    """
    if not isinstance(topic, str) or not topic.strip():
        raise ValidationError("Topic must be a non-empty string")
    topic = topic.strip()
    if len(topic) > MAX_TOPIC_LENGTH:
        raise ValidationError(
            f"Topic is {len(topic)} characters, maximum is {MAX_TOPIC_LENGTH}"
        )
    if (
        isinstance(target_duration_seconds, bool)
        or not isinstance(target_duration_seconds, int)
        or not MIN_TARGET_DURATION_SECONDS
        <= target_duration_seconds
        <= MAX_TARGET_DURATION_SECONDS
    ):
        raise ValidationError(
            f"Target duration must be an integer between {MIN_TARGET_DURATION_SECONDS} "
            f"and {MAX_TARGET_DURATION_SECONDS} seconds, got {target_duration_seconds!r}"
        )
    return topic


def _resolve_task_id(task_id: str | None) -> str:
    if task_id is None:
        return uuid.uuid4().hex
    if (
        not isinstance(task_id, str)
        or len(task_id) > MAX_TASK_ID_LENGTH
        or not _TASK_ID_PATTERN.match(task_id)
    ):
        raise ValidationError(
            f"Task id must be 1-{MAX_TASK_ID_LENGTH} letters, digits, underscores or dashes"
        )
    return task_id


def _check_expectations(
    task: Task,
    expected_state: TaskState,
    expected_revision: int | None,
) -> None:
    if task.state is not expected_state:
        raise ConflictError(task.id, expected=expected_state.value, actual=task.state.value)
    if expected_revision is not None and task.revision != expected_revision:
        raise ConflictError(
            task.id,
            expected=f"revision {expected_revision}",
            actual=f"revision {task.revision}",
        )


def _transition_values(current: Task, new_state: TaskState, patch: TaskPatch | None) -> dict:
    """Compute the fields a transition writes.

    Raises:
        InvalidStateTransitionError: If the edge is not allowed.
        ValidationError: If entering failed without an error record.
    """
    validate_transition(current.state, new_state)
    patch = patch or TaskPatch()
    if new_state is TaskState.FAILED and patch.error is None:
        raise ValidationError("A transition to failed must record an error")

    artifacts = current.artifacts
    if patch.artifacts is not None:
        artifacts = artifacts.merged_with(patch.artifacts)

    if new_state is TaskState.FAILED:
        # Keep the stage that was running so the failure is attributable
        current_stage = current.current_stage
    else:
        current_stage = stage_for_state(new_state)

    return {
        "state": new_state,
        "progress_percent": progress_for_state(new_state, current.progress_percent),
        "current_stage": current_stage,
        "artifacts": artifacts,
        "error": patch.error if patch.error is not None else current.error,
        "attempt": patch.attempt if patch.attempt is not None else current.attempt,
        "revision": current.revision + 1,
        "updated_at": utcnow(),
    }


def _requeue_values(current: Task) -> dict:
    return {
        "state": TaskState.PENDING,
        "progress_percent": 0,
        "current_stage": None,
        "artifacts": TaskArtifacts(),
        "error": None,
        "attempt": 1,
        "cancel_requested": False,
        "revision": current.revision + 1,
        "updated_at": utcnow(),
    }


class TaskRegistry(ABC):
    """Abstract task store with guarded transitions.

    All methods are coroutines so the in-memory and durable implementations
    are interchangeable for the orchestrator, the worker pool and the API.
    """

    @abstractmethod
    async def create(
        self,
        topic: str,
        target_duration_seconds: int,
        task_id: str | None = None,
    ) -> Task:
        """Create a task in pending.

        Raises:
            ValidationError: Empty/oversized topic or out-of-range duration.
            DuplicateTaskError: task_id already exists.
        """

    @abstractmethod
    async def get(self, task_id: str) -> Task:
        """Return a snapshot of the task.

        Raises:
            TaskNotFoundError: Unknown id.
        """

    @abstractmethod
    async def transition(
        self,
        task_id: str,
        new_state: TaskState,
        patch: TaskPatch | None = None,
        *,
        expected_state: TaskState,
        expected_revision: int | None = None,
    ) -> Task:
        """Atomically move a task to new_state and apply patch.

        Args:
            task_id: Task to mutate.
            new_state: Target state (may equal the current state for
                retry bookkeeping).
            patch: Artifacts to merge, attempt counter, failure record.
            expected_state: State the caller believes the task holds.
            expected_revision: Revision the caller read, if it wants
                protection against same-state concurrent writers.

        Returns:
            The task after the transition.

        Raises:
            TaskNotFoundError: Unknown id.
            ConflictError: Stored state/revision differs from the expectation.
            InvalidStateTransitionError: Edge not in VALID_TRANSITIONS.
            ValidationError: Entering failed without an error record.
        """

    @abstractmethod
    async def list_tasks(
        self,
        states: Iterable[TaskState] | None = None,
        limit: int | None = None,
    ) -> list[Task]:
        """List tasks, optionally filtered by state, FIFO by creation."""

    @abstractmethod
    async def request_cancel(self, task_id: str) -> Task:
        """Flag a non-terminal task for cooperative cancellation.

        Raises:
            TaskNotFoundError: Unknown id.
            ConflictError: Task is already terminal.
        """

    @abstractmethod
    async def requeue(self, task_id: str) -> Task:
        """Explicit retry: move a terminal task back to pending.

        Resets attempt to 1 and clears error, artifacts and the cancel flag.

        Raises:
            TaskNotFoundError: Unknown id.
            ConflictError: Task is not terminal.
        """

    @abstractmethod
    async def stats(self) -> QueueStats:
        """Return counts per lifecycle bucket."""


class InMemoryTaskRegistry(TaskRegistry):
    """Registry held in process memory.

    Each task id has its own asyncio.Lock; the check-and-apply of a
    transition happens while holding it, so concurrent coroutines targeting
    the same id serialize and the loser sees ConflictError.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._create_lock = asyncio.Lock()

    def _lock_for(self, task_id: str) -> asyncio.Lock:
        return self._locks.setdefault(task_id, asyncio.Lock())

    def _require(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    async def create(
        self,
        topic: str,
        target_duration_seconds: int,
        task_id: str | None = None,
    ) -> Task:
        topic = validate_request(topic, target_duration_seconds)
        task_id = _resolve_task_id(task_id)
        async with self._create_lock:
            if task_id in self._tasks:
                raise DuplicateTaskError(task_id)
            now = utcnow()
            task = Task(
                id=task_id,
                topic=topic,
                target_duration_seconds=target_duration_seconds,
                created_at=now,
                updated_at=now,
            )
            self._tasks[task_id] = task

        log.info(
            "task_created",
            task_id=task_id,
            target_duration_seconds=target_duration_seconds,
        )
        return task

    async def get(self, task_id: str) -> Task:
        return self._require(task_id)

    async def transition(
        self,
        task_id: str,
        new_state: TaskState,
        patch: TaskPatch | None = None,
        *,
        expected_state: TaskState,
        expected_revision: int | None = None,
    ) -> Task:
        async with self._lock_for(task_id):
            current = self._require(task_id)
            _check_expectations(current, expected_state, expected_revision)
            updated = current.model_copy(
                update=_transition_values(current, new_state, patch)
            )
            self._tasks[task_id] = updated

        log.debug(
            "task_transitioned",
            task_id=task_id,
            from_state=current.state.value,
            to_state=new_state.value,
            revision=updated.revision,
        )
        return updated

    async def list_tasks(
        self,
        states: Iterable[TaskState] | None = None,
        limit: int | None = None,
    ) -> list[Task]:
        wanted = set(states) if states is not None else None
        tasks = [
            task
            for task in self._tasks.values()
            if wanted is None or task.state in wanted
        ]
        # dict preserves insertion order; stable sort keeps it for equal timestamps
        tasks.sort(key=lambda task: task.created_at)
        if limit is not None:
            tasks = tasks[:limit]
        return tasks

    async def request_cancel(self, task_id: str) -> Task:
        async with self._lock_for(task_id):
            current = self._require(task_id)
            if current.state in TERMINAL_STATES:
                raise ConflictError(task_id, expected="non-terminal state", actual=current.state.value)
            updated = current.model_copy(
                update={
                    "cancel_requested": True,
                    "revision": current.revision + 1,
                    "updated_at": utcnow(),
                }
            )
            self._tasks[task_id] = updated

        log.info("task_cancel_requested", task_id=task_id, state=updated.state.value)
        return updated

    async def requeue(self, task_id: str) -> Task:
        async with self._lock_for(task_id):
            current = self._require(task_id)
            if current.state not in TERMINAL_STATES:
                raise ConflictError(task_id, expected="completed or failed", actual=current.state.value)
            updated = current.model_copy(update=_requeue_values(current))
            self._tasks[task_id] = updated

        log.info("task_requeued", task_id=task_id, previous_state=current.state.value)
        return updated

    async def stats(self) -> QueueStats:
        return _count_states(task.state for task in self._tasks.values())


def _count_states(states: Iterable[TaskState]) -> QueueStats:
    stats = QueueStats()
    for state in states:
        if state is TaskState.PENDING:
            stats.pending += 1
        elif state is TaskState.COMPLETED:
            stats.completed += 1
        elif state is TaskState.FAILED:
            stats.failed += 1
        elif state in RUNNING_STATES:
            stats.active += 1
    return stats


def _to_columns(values: dict) -> dict:
    """Convert pydantic-valued fields into JSON column payloads."""
    columns = dict(values)
    if "artifacts" in columns:
        columns["artifacts"] = columns["artifacts"].model_dump(mode="json", exclude_none=True)
    if "error" in columns:
        error = columns["error"]
        columns["error"] = error.model_dump(mode="json") if error is not None else None
    return columns


class SqlTaskRegistry(TaskRegistry):
    """Durable registry backed by the production_tasks table.

    Short transaction pattern: each operation opens its own session, reads
    the row, and writes with a compare-and-set UPDATE guarded on the state and
    revision it read. A zero rowcount means another writer got there first.

    Args:
        session_factory: async_sessionmaker with expire_on_commit=False.

    Example:
        >>> from shortforge.database import get_session_factory
        >>> registry = SqlTaskRegistry(get_session_factory())
        >>> task = await registry.create("Daisy care", 120)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(
        self,
        topic: str,
        target_duration_seconds: int,
        task_id: str | None = None,
    ) -> Task:
        topic = validate_request(topic, target_duration_seconds)
        task_id = _resolve_task_id(task_id)
        now = utcnow()
        record = TaskRecord(
            id=task_id,
            topic=topic,
            target_duration_seconds=target_duration_seconds,
            state=TaskState.PENDING,
            progress_percent=0,
            current_stage=None,
            artifacts={},
            error=None,
            attempt=1,
            cancel_requested=False,
            revision=0,
            created_at=now,
            updated_at=now,
        )
        try:
            async with self._session_factory() as session, session.begin():
                if await session.get(TaskRecord, task_id) is not None:
                    raise DuplicateTaskError(task_id)
                session.add(record)
        except IntegrityError as e:
            # Lost a race with a concurrent create of the same id
            raise DuplicateTaskError(task_id) from e

        log.info(
            "task_created",
            task_id=task_id,
            target_duration_seconds=target_duration_seconds,
        )
        return Task.model_validate(record)

    async def get(self, task_id: str) -> Task:
        async with self._session_factory() as session:
            record = await session.get(TaskRecord, task_id)
            if record is None:
                raise TaskNotFoundError(task_id)
            return Task.model_validate(record)

    async def _compare_and_set(
        self,
        session: AsyncSession,
        current: Task,
        values: dict,
    ) -> None:
        result = await session.execute(
            update(TaskRecord)
            .where(
                TaskRecord.id == current.id,
                TaskRecord.state == current.state,
                TaskRecord.revision == current.revision,
            )
            .values(**_to_columns(values))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError(
                current.id,
                expected=f"{current.state.value} at revision {current.revision}",
                actual="concurrently modified",
            )

    async def _load(self, session: AsyncSession, task_id: str) -> Task:
        record = await session.get(TaskRecord, task_id, populate_existing=True)
        if record is None:
            raise TaskNotFoundError(task_id)
        return Task.model_validate(record)

    async def transition(
        self,
        task_id: str,
        new_state: TaskState,
        patch: TaskPatch | None = None,
        *,
        expected_state: TaskState,
        expected_revision: int | None = None,
    ) -> Task:
        async with self._session_factory() as session, session.begin():
            current = await self._load(session, task_id)
            _check_expectations(current, expected_state, expected_revision)
            values = _transition_values(current, new_state, patch)
            await self._compare_and_set(session, current, values)

        log.debug(
            "task_transitioned",
            task_id=task_id,
            from_state=current.state.value,
            to_state=new_state.value,
            revision=values["revision"],
        )
        return current.model_copy(update=values)

    async def list_tasks(
        self,
        states: Iterable[TaskState] | None = None,
        limit: int | None = None,
    ) -> list[Task]:
        query = select(TaskRecord).order_by(TaskRecord.created_at.asc())
        if states is not None:
            query = query.where(TaskRecord.state.in_(list(states)))
        if limit:
            query = query.limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return [Task.model_validate(record) for record in result.scalars().all()]

    async def request_cancel(self, task_id: str) -> Task:
        async with self._session_factory() as session, session.begin():
            current = await self._load(session, task_id)
            if current.state in TERMINAL_STATES:
                raise ConflictError(task_id, expected="non-terminal state", actual=current.state.value)
            values = {
                "cancel_requested": True,
                "revision": current.revision + 1,
                "updated_at": utcnow(),
            }
            await self._compare_and_set(session, current, values)

        log.info("task_cancel_requested", task_id=task_id, state=current.state.value)
        return current.model_copy(update=values)

    async def requeue(self, task_id: str) -> Task:
        async with self._session_factory() as session, session.begin():
            current = await self._load(session, task_id)
            if current.state not in TERMINAL_STATES:
                raise ConflictError(task_id, expected="completed or failed", actual=current.state.value)
            values = _requeue_values(current)
            await self._compare_and_set(session, current, values)

        log.info("task_requeued", task_id=task_id, previous_state=current.state.value)
        return current.model_copy(update=values)

    async def stats(self) -> QueueStats:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TaskRecord.state, func.count()).group_by(TaskRecord.state)
            )
            counts = {state: count for state, count in result.all()}

        return QueueStats(
            pending=counts.get(TaskState.PENDING, 0),
            active=sum(counts.get(state, 0) for state in RUNNING_STATES),
            completed=counts.get(TaskState.COMPLETED, 0),
            failed=counts.get(TaskState.FAILED, 0),
        )
