"""Collaborator contracts used by the stage executors.

The pipeline depends only on these protocols. Concrete adapters live beside
this module (mock.py for tests and development, the live adapters for
production) and are selected by clients.factory.build_collaborators().

Adapters raise whatever their transport raises (httpx errors, timeouts,
MediaCommandError, ValueError). Turning those into classified
CollaboratorErrors is the stage executor's job, not the adapter's.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from shortforge.schemas.media import RenderTimeline, StyleConfig, SynthesizedSpeech, VisualAsset

# Render progress callback: fraction of the timeline encoded, in [0, 1]
ProgressCallback = Callable[[float], None]


@runtime_checkable
class ScriptGenerator(Protocol):
    async def generate_script(self, topic: str, target_words: int) -> str:
        """Write narration text of roughly target_words words about topic."""
        ...


@runtime_checkable
class SpeechSynthesizer(Protocol):
    async def synthesize(self, text: str, voice_id: str) -> SynthesizedSpeech:
        """Speak text with voice_id; return the audio ref and its duration."""
        ...

    async def concatenate(self, segments: list[SynthesizedSpeech]) -> SynthesizedSpeech:
        """Join chunk audio in the given order into a single track."""
        ...


@runtime_checkable
class VisualSearch(Protocol):
    async def find_visuals(self, keywords: list[str], count: int) -> list[VisualAsset]:
        """Return up to count assets matching keywords (possibly fewer, possibly none)."""
        ...


@runtime_checkable
class VideoRenderer(Protocol):
    async def render(self, timeline: RenderTimeline, on_progress: ProgressCallback) -> str:
        """Encode the timeline; return the output video ref.

        Raises:
            AssetReferenceError: One slice's asset could not be read.
        """
        ...


@runtime_checkable
class ThumbnailGenerator(Protocol):
    async def generate_thumbnail(self, topic: str, style: StyleConfig) -> str:
        """Render a thumbnail image; return its ref."""
        ...


@dataclass
class Collaborators:
    """The five collaborators a pipeline run needs."""

    script: ScriptGenerator
    speech: SpeechSynthesizer
    visuals: VisualSearch
    renderer: VideoRenderer
    thumbnail: ThumbnailGenerator

    async def aclose(self) -> None:
        """Close every adapter that holds a connection (the live httpx clients)."""
        for collaborator in (self.script, self.speech, self.visuals, self.renderer, self.thumbnail):
            close = getattr(collaborator, "close", None)
            if close is not None:
                await close()
