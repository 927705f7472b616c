"""Async wrapper for media command-line tools (ffmpeg, ffprobe).

Critical Pattern:
- Adapters MUST use this wrapper instead of subprocess.run() directly
- Ensures non-blocking execution via asyncio.to_thread()
- Enforces timeout management per call
- Provides structured error handling with MediaCommandError

Exit code 124 is reported for timeouts so that stage classification treats
them like the `timeout(1)` utility does: transient.
"""

import asyncio
import os
import shutil
import subprocess

from shortforge.utils.logging import get_logger

log = get_logger(__name__)

ALLOWED_PROGRAMS = ("ffmpeg", "ffprobe")
TIMEOUT_EXIT_CODE = 124


class MediaCommandError(Exception):
    """Raised when a media command fails with a non-zero exit code.

    Attributes:
        program (str): Program name (e.g., "ffmpeg")
        exit_code (int): Process exit code (124 for timeouts)
        stderr (str): Captured stderr output
    """

    def __init__(self, program: str, exit_code: int, stderr: str) -> None:
        self.program: str = program
        self.exit_code: int = exit_code
        self.stderr: str = stderr
        super().__init__(f"{program} failed with exit code {exit_code}: {stderr[:500]}")


def _sanitize_args(args: list[str]) -> list[str]:
    # Truncate long arguments (filter graphs, paths) to prevent log bloat
    return [arg[:100] + "..." if len(arg) > 100 else arg for arg in args]


async def run_media_command(
    program: str,
    args: list[str],
    timeout: float | None = None,
    env: dict[str, str] | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run ffmpeg/ffprobe without blocking the event loop.

    Args:
        program: "ffmpeg" or "ffprobe".
        args: Command-line arguments.
        timeout: Seconds before the process is killed (None = unbounded).
        env: Extra environment variables layered over the parent environment.

    Returns:
        CompletedProcess with stdout, stderr, returncode.

    Raises:
        ValueError: If program is not an allowed media tool.
        FileNotFoundError: If program is not installed.
        MediaCommandError: Non-zero exit, or exit code 124 on timeout.

    Example:
        >>> result = await run_media_command(
        ...     "ffprobe",
        ...     ["-v", "error", "-show_entries", "format=duration", "narration.mp3"],
        ...     timeout=30,
        ... )
    """
    if program not in ALLOWED_PROGRAMS:
        raise ValueError(f"Program must be one of {ALLOWED_PROGRAMS}, got: {program}")

    executable = shutil.which(program)
    if executable is None:
        raise FileNotFoundError(f"{program} not found on PATH")

    process_env = os.environ.copy()
    if env:
        process_env.update(env)

    log.info("media_command_start", program=program, args=_sanitize_args(args), timeout=timeout)

    try:
        result = await asyncio.to_thread(
            subprocess.run,
            [executable, *args],
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
            env=process_env,
        )
    except subprocess.TimeoutExpired as e:
        log.error("media_command_timeout", program=program, timeout=timeout)
        raise MediaCommandError(
            program, TIMEOUT_EXIT_CODE, f"{program} exceeded timeout of {timeout}s"
        ) from e

    if result.returncode != 0:
        stderr_truncated = (
            result.stderr[-500:] if len(result.stderr) > 500 else result.stderr
        )
        log.error(
            "media_command_error",
            program=program,
            exit_code=result.returncode,
            stderr=stderr_truncated,
        )
        raise MediaCommandError(program, result.returncode, result.stderr)

    log.info("media_command_success", program=program)
    return result


async def probe_duration(path: str, timeout: float = 30) -> float:
    """Return a media file's duration in seconds using ffprobe.

    Raises:
        MediaCommandError: ffprobe failed.
        ValueError: ffprobe printed something that is not a positive number.
    """
    result = await run_media_command(
        "ffprobe",
        [
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            path,
        ],
        timeout=timeout,
    )
    duration = float(result.stdout.strip())
    if duration <= 0:
        raise ValueError(f"ffprobe reported non-positive duration {duration} for {path}")
    return duration
