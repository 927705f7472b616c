"""Shared contract and error classification for pipeline stage executors.

A stage executor turns one stage input into one artifact by calling a single
external collaborator. Executors are stateless between invocations and never
decide whether to retry the stage: they classify what went wrong and raise.

Error Classification:
    Retryable (CollaboratorError.retryable = True):
    - TimeoutError / asyncio.TimeoutError, httpx.TimeoutException
    - ConnectionError, httpx.TransportError
    - HTTP 429 and 5xx responses
    - Media command timeouts (exit code 124)
    - Messages mentioning "timeout", "rate limit" or "429"

    Fatal (CollaboratorError.retryable = False):
    - HTTP 4xx other than 429 (401/403 unauthorized, 422 unprocessable)
    - ValueError (malformed collaborator output), FileNotFoundError
    - Media command failures other than timeouts
    - Anything else

    Passed through untouched:
    - CollaboratorError (already classified), ValidationError,
      AllocationError, AssetReferenceError
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from typing import Generic, TypeVar

import httpx

from shortforge.exceptions import (
    AllocationError,
    AssetReferenceError,
    CollaboratorError,
    ValidationError,
)
from shortforge.models import PipelineStage
from shortforge.utils.cli_wrapper import TIMEOUT_EXIT_CODE, MediaCommandError
from shortforge.utils.logging import get_logger

log = get_logger(__name__)

InputT = TypeVar("InputT")
OutputT = TypeVar("OutputT")
T = TypeVar("T")

_PASSTHROUGH_ERRORS = (CollaboratorError, ValidationError, AllocationError, AssetReferenceError)


def _classify_status(status_code: int) -> tuple[bool, str]:
    if status_code == 429:
        return True, "rate_limited"
    if status_code >= 500:
        return True, "server_error"
    if status_code in (401, 403):
        return False, "unauthorized"
    if status_code == 422:
        return False, "unprocessable"
    return False, "client_error"


def classify_exception(stage: PipelineStage, exc: BaseException) -> CollaboratorError:
    """Classify a raw collaborator exception as retryable or fatal.

    Args:
        stage: Stage whose collaborator raised.
        exc: The exception caught around the collaborator call.

    Returns:
        CollaboratorError carrying the stage, the retryable flag and a short
        error_type label. Callers raise it ``from exc``.

    Example:
        >>> err = classify_exception(PipelineStage.SCRIPT_GENERATING, TimeoutError("slow"))
        >>> err.retryable, err.error_type
        (True, 'timeout')
    """
    if isinstance(exc, CollaboratorError):
        if exc.stage is None:
            exc.stage = stage
        return exc

    message = str(exc) or exc.__class__.__name__

    if isinstance(exc, httpx.HTTPStatusError):
        retryable, error_type = _classify_status(exc.response.status_code)
        return CollaboratorError(
            f"HTTP {exc.response.status_code}: {message}",
            retryable=retryable,
            stage=stage,
            error_type=error_type,
        )

    if isinstance(exc, TimeoutError | asyncio.TimeoutError | httpx.TimeoutException):
        return CollaboratorError(message, retryable=True, stage=stage, error_type="timeout")

    if isinstance(exc, ConnectionError | httpx.TransportError):
        return CollaboratorError(message, retryable=True, stage=stage, error_type="connection_error")

    if isinstance(exc, MediaCommandError):
        if exc.exit_code == TIMEOUT_EXIT_CODE:
            return CollaboratorError(message, retryable=True, stage=stage, error_type="media_timeout")
        return CollaboratorError(
            message, retryable=False, stage=stage, error_type="media_command_failed"
        )

    lowered = message.lower()
    if "timeout" in lowered or "rate limit" in lowered or "429" in lowered:
        return CollaboratorError(
            message, retryable=True, stage=stage, error_type="transient_api_error"
        )

    if isinstance(exc, FileNotFoundError):
        return CollaboratorError(message, retryable=False, stage=stage, error_type="file_not_found")

    if isinstance(exc, ValueError):
        return CollaboratorError(message, retryable=False, stage=stage, error_type="invalid_response")

    return CollaboratorError(message, retryable=False, stage=stage, error_type="unknown_error")


class StageExecutor(ABC, Generic[InputT, OutputT]):
    """Base class for the five stage executors.

    Subclasses set ``stage`` and implement ``execute``. Collaborator calls go
    through ``_invoke`` so that every stage applies its timeout and
    classification the same way.
    """

    stage: PipelineStage

    @abstractmethod
    async def execute(self, stage_input: InputT) -> OutputT:
        """Produce this stage's artifact.

        Raises:
            CollaboratorError: Classified collaborator failure.
            ValidationError: Input the stage cannot work with.
        """

    async def _invoke(self, call: Awaitable[T], *, timeout: float | None, operation: str) -> T:
        """Await a collaborator call under a hard timeout and classify failures."""
        try:
            if timeout is None:
                return await call
            return await asyncio.wait_for(call, timeout=timeout)
        except _PASSTHROUGH_ERRORS:
            raise
        except Exception as e:
            error = classify_exception(self.stage, e)
            log.warning(
                "collaborator_call_failed",
                stage=self.stage.value,
                operation=operation,
                error_type=error.error_type,
                retryable=error.retryable,
                error=str(e)[:200],
            )
            raise error from e
