"""Filesystem path helpers for the per-task media workspace.

The get_* helpers create the directory if it does not exist. Every helper
validates the task id so that resolved paths stay inside the workspace root.
remove_task_workspace() deletes a finished task's media once it has aged
past the retention window.

Layout:
    {WORKSPACE_ROOT}/tasks/{task_id}/
    ├── audio/
    ├── video/
    └── thumbnail/

Usage:
    from shortforge.utils.filesystem import get_audio_dir

    chunk_path = get_audio_dir(task_id) / "chunk_000.mp3"
"""

import re
import shutil
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path

from shortforge.config import get_workspace_root

TASKS_DIR_NAME = "tasks"
AUDIO_DIR_NAME = "audio"
VIDEO_DIR_NAME = "video"
THUMBNAIL_DIR_NAME = "thumbnail"

# Used by adapters invoked outside a pipeline run (CLI smoke tests, scripts)
SHARED_TASK_ID = "shared"

# Task whose pipeline is running in the current asyncio context
_current_task_id: ContextVar[str | None] = ContextVar("current_task_id", default=None)

# Validation pattern: alphanumeric, underscores, dashes only
_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")


def _validate_identifier(identifier: str, name: str) -> None:
    """Validate identifier to prevent path traversal.

    Raises:
        ValueError: If identifier is empty or has characters outside [A-Za-z0-9_-].
    """
    if not identifier:
        raise ValueError(f"{name} cannot be empty")

    if not _ID_PATTERN.match(identifier):
        raise ValueError(
            f"Invalid {name}: '{identifier}'. "
            f"Only alphanumeric characters, underscores, and dashes are allowed."
        )


def _workspace_root(root: Path | str | None) -> Path:
    return Path(root) if root is not None else Path(get_workspace_root())


def _task_path(task_id: str, root: Path | str | None) -> Path:
    _validate_identifier(task_id, "task_id")
    base = _workspace_root(root)
    path = base / TASKS_DIR_NAME / task_id
    if not path.resolve().is_relative_to(base.resolve()):
        raise ValueError(f"Path escapes workspace root: {path}")
    return path


def get_task_workspace(task_id: str, root: Path | str | None = None) -> Path:
    """Return (and create) the workspace directory of one task.

    Args:
        task_id: Task identifier (alphanumeric, underscores, dashes).
        root: Workspace root; defaults to WORKSPACE_ROOT from the environment.

    Raises:
        ValueError: Invalid task id or a path escaping the root.
    """
    path = _task_path(task_id, root)
    path.mkdir(parents=True, exist_ok=True)
    return path


def remove_task_workspace(task_id: str, root: Path | str | None = None) -> bool:
    """Delete a task's workspace directory and everything in it.

    Returns:
        True if a directory was removed, False if the task had none.

    Raises:
        ValueError: Invalid task id or a path escaping the root.
    """
    path = _task_path(task_id, root)
    if not path.is_dir():
        return False
    shutil.rmtree(path)
    return True


def _task_subdir(task_id: str, name: str, root: Path | str | None) -> Path:
    path = get_task_workspace(task_id, root) / name
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_audio_dir(task_id: str, root: Path | str | None = None) -> Path:
    """Directory for narration chunks and the joined narration."""
    return _task_subdir(task_id, AUDIO_DIR_NAME, root)


def get_video_dir(task_id: str, root: Path | str | None = None) -> Path:
    return _task_subdir(task_id, VIDEO_DIR_NAME, root)


def get_thumbnail_dir(task_id: str, root: Path | str | None = None) -> Path:
    return _task_subdir(task_id, THUMBNAIL_DIR_NAME, root)


@contextmanager
def task_workspace(task_id: str) -> Iterator[None]:
    """Bind task_id as the active task for adapters writing media files.

    Collaborator interfaces carry no task id, so live adapters call
    active_task_id() to find the directory they should write into.
    """
    _validate_identifier(task_id, "task_id")
    token = _current_task_id.set(task_id)
    try:
        yield
    finally:
        _current_task_id.reset(token)


def active_task_id() -> str:
    """Return the task bound by task_workspace(), or SHARED_TASK_ID."""
    return _current_task_id.get() or SHARED_TASK_ID
