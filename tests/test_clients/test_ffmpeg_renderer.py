"""Tests for FFmpegVideoRenderer.

run_media_command is patched, so these tests check the ffmpeg invocations
and the error mapping rather than actual encoding.
"""

import pytest

from shortforge.clients.ffmpeg_renderer import (
    FFmpegVideoRenderer,
    final_args,
    scale_filter,
    segment_args,
)
from shortforge.exceptions import AssetReferenceError
from shortforge.schemas.media import AudioAsset, RenderTimeline, VisualAsset, VisualSlice
from shortforge.utils.cli_wrapper import TIMEOUT_EXIT_CODE, MediaCommandError
from shortforge.utils.filesystem import task_workspace


def _timeline() -> RenderTimeline:
    image = VisualAsset(kind="image", source_ref="https://images.pexels.com/1.jpg")
    clip = VisualAsset(kind="video", source_ref="https://videos.pexels.com/2.mp4", native_duration_seconds=4.0)
    return RenderTimeline(
        slices=(
            VisualSlice(asset=image, start_offset_seconds=0.0, slice_duration_seconds=5.0),
            VisualSlice(asset=clip, start_offset_seconds=5.0, slice_duration_seconds=4.0),
        ),
        audio_ref="/work/narration.mp3",
        audio_duration_seconds=9.0,
    )


class TestArguments:
    def test_image_segment_loops_still(self, tmp_path):
        video_slice = _timeline().slices[0]

        args = segment_args(video_slice, tmp_path / "segment_0000.mp4")

        assert args[:7] == ["-y", "-loop", "1", "-t", "5.000", "-i", "https://images.pexels.com/1.jpg"]
        assert args[args.index("-vf") + 1] == scale_filter()
        assert args[args.index("-r") + 1] == "30"
        assert args[-1] == str(tmp_path / "segment_0000.mp4")

    def test_video_segment_drops_source_audio(self, tmp_path):
        args = segment_args(_timeline().slices[1], tmp_path / "segment_0001.mp4")

        assert args[1:3] == ["-stream_loop", "-1"]
        assert "-an" in args

    def test_scale_filter_letterboxes(self):
        assert scale_filter(1280, 720) == (
            "scale=1280:720:force_original_aspect_ratio=decrease,pad=1280:720:(ow-iw)/2:(oh-ih)/2"
        )

    def test_final_mux_is_bounded_by_audio(self, tmp_path):
        args = final_args(tmp_path / "segments.txt", "/work/narration.mp3", tmp_path / "final.mp4")

        assert "-shortest" in args
        assert args[args.index("-c:a") + 1] == "aac"
        assert args.count("-i") == 2


class TestRender:
    @pytest.mark.asyncio
    async def test_encodes_segments_then_muxes(self, tmp_path, mocker):
        run = mocker.patch("shortforge.clients.ffmpeg_renderer.run_media_command")
        progress: list[float] = []

        with task_workspace("task-1"):
            output = await FFmpegVideoRenderer(tmp_path).render(_timeline(), progress.append)

        video_dir = tmp_path / "tasks" / "task-1" / "video"
        assert output == str(video_dir / "final.mp4")
        assert run.await_count == 3
        assert progress == pytest.approx([1 / 3, 2 / 3, 1.0])

        listing = (video_dir / "segments.txt").read_text().splitlines()
        assert listing == [
            f"file '{(video_dir / 'segment_0000.mp4').resolve()}'",
            f"file '{(video_dir / 'segment_0001.mp4').resolve()}'",
        ]
        final_call = run.await_args_list[-1]
        assert final_call.args[1][-1] == output

    @pytest.mark.asyncio
    async def test_undecodable_asset_is_attributed(self, tmp_path, mocker):
        mocker.patch(
            "shortforge.clients.ffmpeg_renderer.run_media_command",
            side_effect=[None, MediaCommandError("ffmpeg", 1, "Invalid data found")],
        )

        with pytest.raises(AssetReferenceError) as exc_info:
            await FFmpegVideoRenderer(tmp_path).render(_timeline(), lambda fraction: None)

        assert exc_info.value.source_ref == "https://videos.pexels.com/2.mp4"

    @pytest.mark.asyncio
    async def test_segment_timeout_is_not_an_asset_error(self, tmp_path, mocker):
        mocker.patch(
            "shortforge.clients.ffmpeg_renderer.run_media_command",
            side_effect=MediaCommandError("ffmpeg", TIMEOUT_EXIT_CODE, "timed out"),
        )

        with pytest.raises(MediaCommandError) as exc_info:
            await FFmpegVideoRenderer(tmp_path).render(_timeline(), lambda fraction: None)

        assert exc_info.value.exit_code == TIMEOUT_EXIT_CODE

    @pytest.mark.asyncio
    async def test_final_mux_failure_propagates(self, tmp_path, mocker):
        mocker.patch(
            "shortforge.clients.ffmpeg_renderer.run_media_command",
            side_effect=[None, None, MediaCommandError("ffmpeg", 1, "muxer failed")],
        )

        with pytest.raises(MediaCommandError):
            await FFmpegVideoRenderer(tmp_path).render(_timeline(), lambda fraction: None)
