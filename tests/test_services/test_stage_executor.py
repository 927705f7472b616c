"""Tests for collaborator error classification and the executor base class."""

import asyncio

import httpx
import pytest

from shortforge.exceptions import AllocationError, CollaboratorError, ValidationError
from shortforge.models import PipelineStage
from shortforge.services.stage_executor import StageExecutor, classify_exception
from shortforge.utils.cli_wrapper import MediaCommandError

STAGE = PipelineStage.SCRIPT_GENERATING


def _status_error(status_code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://api.example.com/v1/thing")
    response = httpx.Response(status_code, request=request)
    return httpx.HTTPStatusError(f"status {status_code}", request=request, response=response)


class TestClassifyException:
    @pytest.mark.parametrize(
        ("status_code", "retryable", "error_type"),
        [
            (429, True, "rate_limited"),
            (500, True, "server_error"),
            (503, True, "server_error"),
            (401, False, "unauthorized"),
            (403, False, "unauthorized"),
            (422, False, "unprocessable"),
            (400, False, "client_error"),
            (404, False, "client_error"),
        ],
    )
    def test_http_status(self, status_code, retryable, error_type):
        error = classify_exception(STAGE, _status_error(status_code))
        assert error.retryable is retryable
        assert error.error_type == error_type
        assert error.stage is STAGE

    @pytest.mark.parametrize(
        "exc",
        [
            TimeoutError("took too long"),
            asyncio.TimeoutError(),
            httpx.ReadTimeout("read timed out"),
        ],
    )
    def test_timeouts_are_retryable(self, exc):
        error = classify_exception(STAGE, exc)
        assert error.retryable is True
        assert error.error_type == "timeout"

    @pytest.mark.parametrize(
        "exc",
        [ConnectionResetError("reset"), httpx.ConnectError("refused")],
    )
    def test_connection_errors_are_retryable(self, exc):
        error = classify_exception(STAGE, exc)
        assert error.retryable is True
        assert error.error_type == "connection_error"

    def test_media_timeout_is_retryable(self):
        error = classify_exception(STAGE, MediaCommandError("ffmpeg", 124, "timed out"))
        assert error.retryable is True
        assert error.error_type == "media_timeout"

    def test_media_failure_is_fatal(self):
        error = classify_exception(STAGE, MediaCommandError("ffmpeg", 1, "Invalid data"))
        assert error.retryable is False
        assert error.error_type == "media_command_failed"

    def test_transient_message_is_retryable(self):
        error = classify_exception(STAGE, RuntimeError("Upstream rate limit exceeded"))
        assert error.retryable is True
        assert error.error_type == "transient_api_error"

    def test_value_error_is_fatal(self):
        error = classify_exception(STAGE, ValueError("no content"))
        assert error.retryable is False
        assert error.error_type == "invalid_response"

    def test_file_not_found_is_fatal(self):
        error = classify_exception(STAGE, FileNotFoundError("ffmpeg not found on PATH"))
        assert error.retryable is False
        assert error.error_type == "file_not_found"

    def test_unknown_errors_are_fatal(self):
        error = classify_exception(STAGE, KeyError("choices"))
        assert error.retryable is False
        assert error.error_type == "unknown_error"

    def test_collaborator_error_passes_through_with_stage(self):
        original = CollaboratorError("quota", retryable=True, error_type="quota")
        error = classify_exception(STAGE, original)
        assert error is original
        assert error.stage is STAGE


class _EchoStage(StageExecutor[str, str]):
    stage = PipelineStage.THUMBNAIL_GENERATING

    def __init__(self, call_factory, timeout=None):
        self._call_factory = call_factory
        self._timeout = timeout

    async def execute(self, stage_input: str) -> str:
        return await self._invoke(self._call_factory(stage_input), timeout=self._timeout, operation="echo")


class TestInvoke:
    @pytest.mark.asyncio
    async def test_returns_result(self):
        async def call(value):
            return value.upper()

        assert await _EchoStage(call).execute("ok") == "OK"

    @pytest.mark.asyncio
    async def test_timeout_is_classified_retryable(self):
        async def call(value):
            await asyncio.sleep(1)
            return value

        with pytest.raises(CollaboratorError) as exc_info:
            await _EchoStage(call, timeout=0.01).execute("slow")
        assert exc_info.value.retryable is True
        assert exc_info.value.error_type == "timeout"
        assert exc_info.value.stage is PipelineStage.THUMBNAIL_GENERATING

    @pytest.mark.asyncio
    async def test_raw_errors_are_classified_and_chained(self):
        original = _status_error(401)

        async def call(value):
            raise original

        with pytest.raises(CollaboratorError) as exc_info:
            await _EchoStage(call).execute("x")
        assert exc_info.value.error_type == "unauthorized"
        assert exc_info.value.__cause__ is original

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "exc",
        [ValidationError("bad input"), AllocationError("short")],
    )
    async def test_pipeline_errors_pass_through(self, exc):
        async def call(value):
            raise exc

        with pytest.raises(type(exc)) as exc_info:
            await _EchoStage(call).execute("x")
        assert exc_info.value is exc
