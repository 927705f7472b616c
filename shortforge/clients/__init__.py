"""Collaborator adapters (mock and live) behind the protocols in clients.base."""

from shortforge.clients.base import (
    Collaborators,
    ProgressCallback,
    ScriptGenerator,
    SpeechSynthesizer,
    ThumbnailGenerator,
    VideoRenderer,
    VisualSearch,
)

__all__ = [
    "Collaborators",
    "ProgressCallback",
    "ScriptGenerator",
    "SpeechSynthesizer",
    "ThumbnailGenerator",
    "VideoRenderer",
    "VisualSearch",
]
