"""Pydantic records shared by the registry, the stages and the API."""

from shortforge.schemas.media import (
    AudioAsset,
    RenderTimeline,
    StyleConfig,
    SynthesizedSpeech,
    VideoMetadata,
    VisualAsset,
    VisualSlice,
)
from shortforge.schemas.task import (
    QueueStats,
    Task,
    TaskArtifacts,
    TaskFailure,
    TaskPatch,
    TaskStatusView,
)

__all__ = [
    "AudioAsset",
    "QueueStats",
    "RenderTimeline",
    "StyleConfig",
    "SynthesizedSpeech",
    "Task",
    "TaskArtifacts",
    "TaskFailure",
    "TaskPatch",
    "TaskStatusView",
    "VideoMetadata",
    "VisualAsset",
    "VisualSlice",
]
