"""FFmpeg video renderer.

Rendering Process:
    1. Encode every slice into a 1920x1080, 30 fps H.264 segment of exactly
       the slice's duration (images are looped, short clips are looped)
    2. Join the segments with the concat demuxer and mux the narration
       (AAC, -shortest so the video never outlasts the audio)

Each slice is encoded on its own, so an unreadable asset is attributable:
the failure surfaces as AssetReferenceError carrying that slice's ref, and
the render stage can drop it and render again.
"""

from pathlib import Path

from shortforge.exceptions import AssetReferenceError
from shortforge.schemas.media import RenderTimeline, VisualSlice
from shortforge.utils.cli_wrapper import TIMEOUT_EXIT_CODE, MediaCommandError, run_media_command
from shortforge.utils.filesystem import active_task_id, get_video_dir
from shortforge.utils.logging import get_logger

log = get_logger(__name__)

OUTPUT_WIDTH = 1920
OUTPUT_HEIGHT = 1080
OUTPUT_FPS = 30

SEGMENT_TIMEOUT_SECONDS = 300
FINAL_TIMEOUT_SECONDS = 1800


def scale_filter(width: int = OUTPUT_WIDTH, height: int = OUTPUT_HEIGHT) -> str:
    """Letterbox any input into width x height without distortion."""
    return (
        f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
        f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2"
    )


def segment_args(video_slice: VisualSlice, output_path: Path) -> list[str]:
    """Build the ffmpeg arguments that encode one slice into a segment."""
    duration = f"{video_slice.slice_duration_seconds:.3f}"
    source = video_slice.asset.source_ref
    if video_slice.asset.kind == "image":
        input_args = ["-loop", "1", "-t", duration, "-i", source]
        codec_args = ["-c:v", "libx264", "-pix_fmt", "yuv420p"]
    else:
        input_args = ["-stream_loop", "-1", "-t", duration, "-i", source]
        codec_args = ["-an", "-c:v", "libx264", "-pix_fmt", "yuv420p", "-preset", "fast"]
    return [
        "-y",
        *input_args,
        *codec_args,
        "-vf", scale_filter(),
        "-r", str(OUTPUT_FPS),
        str(output_path),
    ]


def final_args(concat_list: Path, audio_ref: str, output_path: Path) -> list[str]:
    return [
        "-y",
        "-f", "concat",
        "-safe", "0",
        "-i", str(concat_list),
        "-i", audio_ref,
        "-c:v", "libx264",
        "-c:a", "aac",
        "-preset", "medium",
        "-crf", "23",
        "-movflags", "+faststart",
        "-shortest",
        str(output_path),
    ]


class FFmpegVideoRenderer:
    """Renders a RenderTimeline into an MP4 in the active task's video directory."""

    def __init__(self, workspace_root: Path | str | None = None) -> None:
        self.workspace_root = workspace_root

    async def render(self, timeline: RenderTimeline, on_progress) -> str:
        """Encode the timeline and return the final video path.

        Raises:
            AssetReferenceError: A slice's asset could not be decoded
            MediaCommandError: Any other ffmpeg failure (including timeouts)
        """
        video_dir = get_video_dir(active_task_id(), self.workspace_root)
        steps = len(timeline.slices) + 1

        segment_paths = []
        for index, video_slice in enumerate(timeline.slices):
            segment_path = video_dir / f"segment_{index:04d}.mp4"
            await self._encode_segment(video_slice, segment_path)
            segment_paths.append(segment_path)
            on_progress((index + 1) / steps)

        concat_list = video_dir / "segments.txt"
        concat_list.write_text("".join(f"file '{p.resolve()}'\n" for p in segment_paths))
        output_path = video_dir / "final.mp4"

        await run_media_command(
            "ffmpeg",
            final_args(concat_list, timeline.audio_ref, output_path),
            timeout=FINAL_TIMEOUT_SECONDS,
        )
        on_progress(1.0)

        log.info(
            "video_rendered",
            path=str(output_path),
            segments=len(segment_paths),
            duration_seconds=round(timeline.total_duration_seconds, 2),
        )
        return str(output_path)

    async def _encode_segment(self, video_slice: VisualSlice, segment_path: Path) -> None:
        try:
            await run_media_command(
                "ffmpeg",
                segment_args(video_slice, segment_path),
                timeout=SEGMENT_TIMEOUT_SECONDS,
            )
        except MediaCommandError as e:
            if e.exit_code == TIMEOUT_EXIT_CODE:
                raise
            raise AssetReferenceError(
                video_slice.asset.source_ref,
                reason=f"ffmpeg could not decode {video_slice.asset.kind}",
            ) from e
