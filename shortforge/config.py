"""Configuration management for the production pipeline.

This module provides centralized configuration loading from environment
variables. Required values are cached with lru_cache; numeric values are
clamped to sane ranges and fall back to defaults (with a warning) when the
environment holds something unparsable.

Environment Variables:
    DATABASE_URL: PostgreSQL connection URL (required for the durable registry)
    WORKSPACE_ROOT: Base path for rendered media (default: "./workspace")
    COLLABORATOR_BACKEND: "mock" or "live" (default: "mock")
    WORKER_CONCURRENCY: Concurrent pipelines per worker process (default: 3)
    STALE_TASK_TIMEOUT_SECONDS: Idle time after which a running task is
        treated as orphaned (default: 1800)
    WORKSPACE_RETENTION_DAYS: Days a finished task keeps its media (default: 7,
        0 keeps media forever)
    STAGE_MAX_RETRIES: Attempts per stage before failing the task (default: 3)
    RETRY_BASE_DELAY_SECONDS: Base of the exponential backoff (default: 5.0)
    SPEECH_CHUNK_SIZE: Max characters per synthesis request (default: 4000)
    DEFAULT_VOICE_ID: Voice used for narration
    OPENAI_API_KEY / OPENAI_MODEL: Script generation (live backend)
    ELEVENLABS_API_KEY / ELEVENLABS_MODEL: Speech synthesis (live backend)
    PEXELS_API_KEY: Visual search (live backend)
    LOG_LEVEL: Logging level (default: "INFO")

Usage:
    from shortforge.config import PipelineSettings, get_worker_concurrency

    settings = PipelineSettings.from_env()
    concurrency = get_worker_concurrency()
"""

import os
from dataclasses import dataclass
from functools import lru_cache

import structlog

from shortforge.constants import (
    DEFAULT_SCRIPT_TIMEOUT_SECONDS,
    DEFAULT_SPEECH_CHUNK_SIZE,
    DEFAULT_SPEECH_TIMEOUT_SECONDS,
    DEFAULT_THUMBNAIL_TIMEOUT_SECONDS,
    DEFAULT_VISUAL_SEARCH_TIMEOUT_SECONDS,
)

log = structlog.get_logger(__name__)

DEFAULT_WORKER_CONCURRENCY = 3
DEFAULT_STALE_TASK_TIMEOUT_SECONDS = 1800.0
DEFAULT_WORKSPACE_RETENTION_DAYS = 7
DEFAULT_STAGE_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY_SECONDS = 5.0
DEFAULT_VOICE_ID = "pNInz6obpgDQGcFmaJgB"
DEFAULT_OPENAI_MODEL = "gpt-4"
DEFAULT_ELEVENLABS_MODEL = "eleven_monolingual_v1"
COLLABORATOR_BACKENDS = ("mock", "live")


def _int_from_env(name: str, default: int, minimum: int, maximum: int) -> int:
    """Read an integer env var, clamped to [minimum, maximum]."""
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return max(minimum, min(maximum, int(raw)))
    except ValueError:
        log.warning("invalid_config_value", name=name, value=raw, using_default=default)
        return default


def _float_from_env(name: str, default: float, minimum: float, maximum: float) -> float:
    """Read a float env var, clamped to [minimum, maximum]."""
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return max(minimum, min(maximum, float(raw)))
    except ValueError:
        log.warning("invalid_config_value", name=name, value=raw, using_default=default)
        return default


@lru_cache
def get_database_url() -> str:
    """Get database URL from environment.

    Converts postgresql:// to postgresql+asyncpg:// for async SQLAlchemy.

    Returns:
        Database URL with an async driver.

    Raises:
        ValueError: If DATABASE_URL not set.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise ValueError("DATABASE_URL environment variable is required")

    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

    return url


def get_workspace_root() -> str:
    """Get workspace root directory for rendered media.

    Environment Variable:
        WORKSPACE_ROOT: Base path for workspace files (default: "./workspace")
    """
    return os.getenv("WORKSPACE_ROOT", "./workspace")


def get_collaborator_backend() -> str:
    """Get the collaborator adapter set to use ("mock" or "live").

    Returns:
        Lower-cased backend name. Unknown values are returned as-is so the
        factory can raise ConfigurationError with the offending value.
    """
    return os.getenv("COLLABORATOR_BACKEND", "mock").strip().lower()


def get_worker_concurrency() -> int:
    """Get the number of concurrent pipelines per worker process.

    Environment Variable:
        WORKER_CONCURRENCY: Pool bound (default: 3, clamped to 1-32)

    Note:
        The bound caps simultaneous pressure on the external collaborators
        and on the local encoder.
    """
    return _int_from_env("WORKER_CONCURRENCY", DEFAULT_WORKER_CONCURRENCY, 1, 32)


def get_stale_task_timeout() -> float:
    """Get seconds without an update after which a running task is orphaned.

    Environment Variable:
        STALE_TASK_TIMEOUT_SECONDS: default 1800 (30 min), clamped to 60-86400

    Note:
        Must exceed the longest render, which runs without a hard timeout and
        writes nothing to the task while it encodes.
    """
    return _float_from_env(
        "STALE_TASK_TIMEOUT_SECONDS", DEFAULT_STALE_TASK_TIMEOUT_SECONDS, 60.0, 86400.0
    )


def get_workspace_retention_days() -> int:
    """Get days a completed or failed task keeps its workspace (default: 7, 0 = forever)."""
    return _int_from_env("WORKSPACE_RETENTION_DAYS", DEFAULT_WORKSPACE_RETENTION_DAYS, 0, 3650)


def get_stage_max_retries() -> int:
    """Get max attempts per stage before the task is failed (default: 3, 1-10)."""
    return _int_from_env("STAGE_MAX_RETRIES", DEFAULT_STAGE_MAX_RETRIES, 1, 10)


def get_retry_base_delay() -> float:
    """Get the base delay of the stage retry backoff in seconds (default: 5.0)."""
    return _float_from_env("RETRY_BASE_DELAY_SECONDS", DEFAULT_RETRY_BASE_DELAY_SECONDS, 0.0, 300.0)


def get_speech_chunk_size() -> int:
    """Get max characters per speech synthesis request (default: 4000)."""
    return _int_from_env("SPEECH_CHUNK_SIZE", DEFAULT_SPEECH_CHUNK_SIZE, 200, 50000)


def get_default_voice_id() -> str:
    """Get the narration voice id.

    Environment Variable:
        DEFAULT_VOICE_ID: Voice identifier passed to the speech collaborator
    """
    return os.getenv("DEFAULT_VOICE_ID") or DEFAULT_VOICE_ID


def get_openai_api_key() -> str | None:
    """Get OpenAI API key, or None if not set."""
    return os.getenv("OPENAI_API_KEY")


def get_openai_model() -> str:
    """Get OpenAI model used for script generation (default: "gpt-4")."""
    return os.getenv("OPENAI_MODEL", DEFAULT_OPENAI_MODEL)


def get_elevenlabs_api_key() -> str | None:
    """Get ElevenLabs API key, or None if not set."""
    return os.getenv("ELEVENLABS_API_KEY")


def get_elevenlabs_model() -> str:
    """Get ElevenLabs model id (default: "eleven_monolingual_v1")."""
    return os.getenv("ELEVENLABS_MODEL", DEFAULT_ELEVENLABS_MODEL)


def get_pexels_api_key() -> str | None:
    """Get Pexels API key, or None if not set."""
    return os.getenv("PEXELS_API_KEY")


def get_log_level() -> str:
    """Get logging level name (default: "INFO")."""
    return os.getenv("LOG_LEVEL", "INFO").upper()


@dataclass(frozen=True)
class StageTimeouts:
    """Hard timeouts per stage in seconds. ``render`` is None (unbounded)."""

    script: float = DEFAULT_SCRIPT_TIMEOUT_SECONDS
    speech: float = DEFAULT_SPEECH_TIMEOUT_SECONDS
    visual_search: float = DEFAULT_VISUAL_SEARCH_TIMEOUT_SECONDS
    thumbnail: float = DEFAULT_THUMBNAIL_TIMEOUT_SECONDS
    render: float | None = None

    @classmethod
    def from_env(cls) -> "StageTimeouts":
        return cls(
            script=_float_from_env(
                "SCRIPT_TIMEOUT_SECONDS", DEFAULT_SCRIPT_TIMEOUT_SECONDS, 1.0, 3600.0
            ),
            speech=_float_from_env(
                "SPEECH_TIMEOUT_SECONDS", DEFAULT_SPEECH_TIMEOUT_SECONDS, 1.0, 3600.0
            ),
            visual_search=_float_from_env(
                "VISUAL_SEARCH_TIMEOUT_SECONDS", DEFAULT_VISUAL_SEARCH_TIMEOUT_SECONDS, 1.0, 3600.0
            ),
            thumbnail=_float_from_env(
                "THUMBNAIL_TIMEOUT_SECONDS", DEFAULT_THUMBNAIL_TIMEOUT_SECONDS, 1.0, 3600.0
            ),
        )


@dataclass(frozen=True)
class PipelineSettings:
    """Runtime knobs for the orchestrator and the stage executors.

    Attributes:
        max_retries: Attempts per stage before the task is failed.
        retry_base_delay: Backoff base; delay = base × 2^(attempt−1).
        speech_chunk_size: Max characters per synthesis request.
        voice_id: Narration voice passed to the speech collaborator.
        timeouts: Per-stage hard timeouts.

    Example:
        >>> settings = PipelineSettings(max_retries=2, retry_base_delay=0)
    """

    max_retries: int = DEFAULT_STAGE_MAX_RETRIES
    retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY_SECONDS
    speech_chunk_size: int = DEFAULT_SPEECH_CHUNK_SIZE
    voice_id: str = DEFAULT_VOICE_ID
    timeouts: StageTimeouts = StageTimeouts()

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        return cls(
            max_retries=get_stage_max_retries(),
            retry_base_delay=get_retry_base_delay(),
            speech_chunk_size=get_speech_chunk_size(),
            voice_id=get_default_voice_id(),
            timeouts=StageTimeouts.from_env(),
        )
