"""ElevenLabs text-to-speech client.

Each synthesize() call writes one MP3 chunk into the active task's audio
directory and measures it with ffprobe. concatenate() joins chunks with the
ffmpeg concat demuxer (stream copy, no re-encode).

Usage:
    from shortforge.clients.elevenlabs import ElevenLabsSpeechClient

    client = ElevenLabsSpeechClient(api_key="...")
    with task_workspace(task_id):
        speech = await client.synthesize("Hello there.", voice_id)
    await client.close()
"""

import uuid
from pathlib import Path

import httpx

from shortforge.schemas.media import SynthesizedSpeech
from shortforge.utils.cli_wrapper import probe_duration, run_media_command
from shortforge.utils.filesystem import active_task_id, get_audio_dir
from shortforge.utils.logging import get_logger

log = get_logger(__name__)

ELEVENLABS_BASE_URL = "https://api.elevenlabs.io/v1"

VOICE_SETTINGS = {
    "stability": 0.5,
    "similarity_boost": 0.75,
    "style": 0.0,
    "use_speaker_boost": True,
}

# ffmpeg concat of many chunks can take a while on slow disks
CONCAT_TIMEOUT_SECONDS = 120


class ElevenLabsSpeechClient:
    """Speech synthesizer backed by the ElevenLabs REST API.

    Attributes:
        model: ElevenLabs model id
        workspace_root: Override for WORKSPACE_ROOT (tests)
        client: Async HTTP client for making requests
    """

    def __init__(
        self,
        api_key: str,
        model: str = "eleven_monolingual_v1",
        workspace_root: Path | str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.model = model
        self.workspace_root = workspace_root
        self.client = client or httpx.AsyncClient(base_url=ELEVENLABS_BASE_URL, timeout=120.0)
        self._headers = {"Accept": "audio/mpeg", "xi-api-key": api_key}

    def _audio_dir(self) -> Path:
        return get_audio_dir(active_task_id(), self.workspace_root)

    async def synthesize(self, text: str, voice_id: str) -> SynthesizedSpeech:
        """Speak text and save the MP3 into the task's audio directory.

        Raises:
            httpx.HTTPStatusError: If ElevenLabs returns an HTTP error
            ValueError: If the response body is empty
            MediaCommandError: If ffprobe cannot read the saved file
        """
        response = await self.client.post(
            f"/text-to-speech/{voice_id}",
            headers=self._headers,
            json={"text": text, "model_id": self.model, "voice_settings": VOICE_SETTINGS},
        )
        response.raise_for_status()
        if not response.content:
            raise ValueError("ElevenLabs returned an empty audio body")

        output_path = self._audio_dir() / f"chunk_{uuid.uuid4().hex[:12]}.mp3"
        output_path.write_bytes(response.content)

        duration = await probe_duration(str(output_path))
        log.info(
            "speech_chunk_saved",
            path=str(output_path),
            characters=len(text),
            duration_seconds=round(duration, 2),
        )
        return SynthesizedSpeech(audio_ref=str(output_path), duration_seconds=duration)

    async def concatenate(self, segments: list[SynthesizedSpeech]) -> SynthesizedSpeech:
        """Join chunk files in order into narration.mp3."""
        if not segments:
            raise ValueError("No audio segments to concatenate")

        audio_dir = self._audio_dir()
        list_path = audio_dir / "concat_list.txt"
        list_path.write_text(
            "".join(f"file '{Path(s.audio_ref).resolve()}'\n" for s in segments)
        )
        output_path = audio_dir / "narration.mp3"

        await run_media_command(
            "ffmpeg",
            ["-y", "-f", "concat", "-safe", "0", "-i", str(list_path), "-c", "copy", str(output_path)],
            timeout=CONCAT_TIMEOUT_SECONDS,
        )
        duration = await probe_duration(str(output_path))
        log.info("speech_concatenated", segments=len(segments), duration_seconds=round(duration, 2))
        return SynthesizedSpeech(audio_ref=str(output_path), duration_seconds=duration)

    async def close(self) -> None:
        await self.client.aclose()
