"""Select and build the collaborator adapters for a worker process.

COLLABORATOR_BACKEND=mock (default) wires the deterministic in-process
collaborators; COLLABORATOR_BACKEND=live wires OpenAI, ElevenLabs, Pexels,
FFmpeg and Pillow. Missing API keys for the live backend fail fast at
startup instead of on the first task.
"""

from pathlib import Path

from shortforge.clients.base import Collaborators
from shortforge.clients.elevenlabs import ElevenLabsSpeechClient
from shortforge.clients.ffmpeg_renderer import FFmpegVideoRenderer
from shortforge.clients.mock import (
    MockScriptGenerator,
    MockSpeechSynthesizer,
    MockThumbnailGenerator,
    MockVideoRenderer,
    MockVisualSearch,
)
from shortforge.clients.openai_script import OpenAIScriptClient
from shortforge.clients.pexels import PexelsVisualSearch
from shortforge.clients.pillow_thumbnail import PillowThumbnailGenerator
from shortforge.config import (
    COLLABORATOR_BACKENDS,
    get_collaborator_backend,
    get_elevenlabs_api_key,
    get_elevenlabs_model,
    get_openai_api_key,
    get_openai_model,
    get_pexels_api_key,
)
from shortforge.exceptions import ConfigurationError
from shortforge.utils.logging import get_logger

log = get_logger(__name__)


def build_mock_collaborators() -> Collaborators:
    return Collaborators(
        script=MockScriptGenerator(),
        speech=MockSpeechSynthesizer(),
        visuals=MockVisualSearch(),
        renderer=MockVideoRenderer(),
        thumbnail=MockThumbnailGenerator(),
    )


def _require(name: str, value: str | None) -> str:
    if not value:
        raise ConfigurationError(f"{name} is required when COLLABORATOR_BACKEND=live")
    return value


def build_live_collaborators(workspace_root: Path | str | None = None) -> Collaborators:
    """Build the production adapters.

    Raises:
        ConfigurationError: If any of the three API keys is missing.
    """
    openai_key = _require("OPENAI_API_KEY", get_openai_api_key())
    elevenlabs_key = _require("ELEVENLABS_API_KEY", get_elevenlabs_api_key())
    pexels_key = _require("PEXELS_API_KEY", get_pexels_api_key())

    return Collaborators(
        script=OpenAIScriptClient(openai_key, model=get_openai_model()),
        speech=ElevenLabsSpeechClient(
            elevenlabs_key,
            model=get_elevenlabs_model(),
            workspace_root=workspace_root,
        ),
        visuals=PexelsVisualSearch(pexels_key),
        renderer=FFmpegVideoRenderer(workspace_root=workspace_root),
        thumbnail=PillowThumbnailGenerator(workspace_root=workspace_root),
    )


def build_collaborators(
    backend: str | None = None,
    workspace_root: Path | str | None = None,
) -> Collaborators:
    """Build the collaborator set for backend (COLLABORATOR_BACKEND when None).

    Raises:
        ConfigurationError: Unknown backend, or live backend without API keys.

    Example:
        >>> collaborators = build_collaborators("mock")
    """
    backend = (backend or get_collaborator_backend()).strip().lower()
    if backend not in COLLABORATOR_BACKENDS:
        raise ConfigurationError(
            f"Unknown COLLABORATOR_BACKEND '{backend}', expected one of {COLLABORATOR_BACKENDS}"
        )

    collaborators = (
        build_mock_collaborators() if backend == "mock" else build_live_collaborators(workspace_root)
    )
    log.info("collaborators_built", backend=backend)
    return collaborators
