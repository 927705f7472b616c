"""Tests for ElevenLabsSpeechClient.

The HTTP API is served by httpx.MockTransport; ffmpeg and ffprobe are
patched out, so no media tools are needed.
"""

import json

import httpx
import pytest

from shortforge.clients.elevenlabs import ELEVENLABS_BASE_URL, ElevenLabsSpeechClient
from shortforge.schemas.media import SynthesizedSpeech
from shortforge.utils.filesystem import task_workspace


def _client(handler, workspace) -> ElevenLabsSpeechClient:
    http = httpx.AsyncClient(base_url=ELEVENLABS_BASE_URL, transport=httpx.MockTransport(handler))
    return ElevenLabsSpeechClient(api_key="xi-test", workspace_root=workspace, client=http)


@pytest.fixture
def probe(mocker):
    return mocker.patch("shortforge.clients.elevenlabs.probe_duration", return_value=4.25)


class TestSynthesize:
    @pytest.mark.asyncio
    async def test_writes_chunk_into_task_audio_dir(self, tmp_path, probe):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=b"ID3-fake-mp3")

        client = _client(handler, tmp_path)
        with task_workspace("task-1"):
            speech = await client.synthesize("Daisies love sun.", "voice-abc")

        audio_path = tmp_path / "tasks" / "task-1" / "audio"
        assert speech.duration_seconds == 4.25
        assert speech.audio_ref.startswith(str(audio_path))
        assert speech.audio_ref.endswith(".mp3")
        with open(speech.audio_ref, "rb") as f:
            assert f.read() == b"ID3-fake-mp3"
        probe.assert_awaited_once_with(speech.audio_ref)

        request = seen[0]
        assert request.url.path == "/v1/text-to-speech/voice-abc"
        assert request.headers["xi-api-key"] == "xi-test"
        assert json.loads(request.content)["text"] == "Daisies love sun."

    @pytest.mark.asyncio
    async def test_outside_a_pipeline_uses_shared_dir(self, tmp_path, probe):
        client = _client(lambda request: httpx.Response(200, content=b"mp3"), tmp_path)

        speech = await client.synthesize("Hello.", "voice-abc")

        assert "/tasks/shared/audio/" in speech.audio_ref

    @pytest.mark.asyncio
    async def test_empty_body_raises(self, tmp_path, probe):
        client = _client(lambda request: httpx.Response(200, content=b""), tmp_path)

        with pytest.raises(ValueError, match="empty audio"):
            await client.synthesize("Hello.", "voice-abc")
        probe.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_http_error_propagates(self, tmp_path, probe):
        client = _client(lambda request: httpx.Response(401), tmp_path)

        with pytest.raises(httpx.HTTPStatusError):
            await client.synthesize("Hello.", "voice-abc")


class TestConcatenate:
    @pytest.mark.asyncio
    async def test_concat_demuxer_in_segment_order(self, tmp_path, probe, mocker):
        run = mocker.patch("shortforge.clients.elevenlabs.run_media_command")
        probe.return_value = 9.5
        client = _client(lambda request: httpx.Response(500), tmp_path)
        segments = [
            SynthesizedSpeech(audio_ref=str(tmp_path / "b.mp3"), duration_seconds=5.0),
            SynthesizedSpeech(audio_ref=str(tmp_path / "a.mp3"), duration_seconds=4.5),
        ]

        with task_workspace("task-2"):
            joined = await client.concatenate(segments)

        audio_dir = tmp_path / "tasks" / "task-2" / "audio"
        assert joined.audio_ref == str(audio_dir / "narration.mp3")
        assert joined.duration_seconds == 9.5
        listing = (audio_dir / "concat_list.txt").read_text().splitlines()
        assert listing == [f"file '{tmp_path.resolve() / 'b.mp3'}'", f"file '{tmp_path.resolve() / 'a.mp3'}'"]

        program, args = run.call_args.args
        assert program == "ffmpeg"
        assert args[args.index("-f") + 1] == "concat"
        assert args[args.index("-c") + 1] == "copy"

    @pytest.mark.asyncio
    async def test_no_segments_raises(self, tmp_path):
        client = _client(lambda request: httpx.Response(500), tmp_path)

        with pytest.raises(ValueError):
            await client.concatenate([])
