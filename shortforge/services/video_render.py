"""Video render stage: RenderTimeline → final video.

Rendering is the longest stage and runs without a hard timeout; progress is
reported through the renderer's callback and logged at 25% steps.

Slice Repair:
    When the encoder cannot read an asset it raises AssetReferenceError. The
    stage drops every slice showing that asset (cycled assets appear more
    than once), lets the neighbours absorb the gaps (total length is
    preserved) and renders once more. A second asset failure, or a timeline
    made only of the bad asset, is fatal.
"""

from shortforge.clients.base import VideoRenderer
from shortforge.exceptions import (
    AllocationError,
    AssetReferenceError,
    CollaboratorError,
    ValidationError,
)
from shortforge.models import PipelineStage
from shortforge.schemas.media import RenderTimeline
from shortforge.services.stage_executor import StageExecutor
from shortforge.services.timeline_allocator import drop_asset
from shortforge.utils.logging import get_logger

log = get_logger(__name__)

PROGRESS_LOG_STEP = 0.25


class _ProgressLogger:
    """Render progress callback that logs each time another 25% is reached."""

    def __init__(self, slice_count: int):
        self._slice_count = slice_count
        self._next_mark = PROGRESS_LOG_STEP

    def __call__(self, fraction: float) -> None:
        while fraction >= self._next_mark and self._next_mark <= 1.0:
            log.info(
                "render_progress",
                percent=round(self._next_mark * 100),
                slice_count=self._slice_count,
            )
            self._next_mark += PROGRESS_LOG_STEP


def _fatal_asset_error(stage: PipelineStage, error: AssetReferenceError, reason: str) -> CollaboratorError:
    return CollaboratorError(
        f"{reason}: {error}",
        retryable=False,
        stage=stage,
        error_type="asset_reference_error",
    )


class VideoRenderStage(StageExecutor[RenderTimeline, str]):
    """Encode a validated timeline with the video renderer."""

    stage = PipelineStage.VIDEO_ASSEMBLING

    def __init__(self, renderer: VideoRenderer):
        self._renderer = renderer

    async def _render(self, timeline: RenderTimeline) -> str:
        video_ref = await self._invoke(
            self._renderer.render(timeline, _ProgressLogger(len(timeline.slices))),
            timeout=None,
            operation="render",
        )
        if not video_ref:
            raise CollaboratorError(
                "Renderer returned an empty video reference",
                retryable=False,
                stage=self.stage,
                error_type="empty_output",
            )
        return video_ref

    async def execute(self, stage_input: RenderTimeline) -> str:
        if not isinstance(stage_input, RenderTimeline):
            raise ValidationError("Render stage only accepts a RenderTimeline")
        timeline = stage_input

        try:
            return await self._render(timeline)
        except AssetReferenceError as e:
            refs = [s.asset.source_ref for s in timeline.slices]
            if e.source_ref not in refs:
                raise _fatal_asset_error(self.stage, e, "Renderer reported an unknown asset") from e
            try:
                repaired_slices = drop_asset(list(timeline.slices), e.source_ref)
            except AllocationError as allocation_error:
                raise _fatal_asset_error(self.stage, e, str(allocation_error)) from e
            repaired = RenderTimeline(
                slices=tuple(repaired_slices),
                audio_ref=timeline.audio_ref,
                audio_duration_seconds=timeline.audio_duration_seconds,
            )
            log.warning(
                "render_asset_dropped",
                source_ref=e.source_ref,
                dropped_slices=refs.count(e.source_ref),
                remaining_slices=len(repaired.slices),
            )

        try:
            return await self._render(repaired)
        except AssetReferenceError as e:
            raise _fatal_asset_error(self.stage, e, "Second asset failure after dropping an asset") from e
