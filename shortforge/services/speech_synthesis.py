"""Speech synthesis stage: narration text → one audio track.

Architecture:
    Long scripts exceed what the speech collaborator accepts in one request,
    so the text is split into chunks on sentence boundaries (falling back to
    word boundaries for a sentence longer than a chunk). Chunks are
    synthesized strictly in order; each chunk has its own retry budget.
    The chunk audio is then joined by the collaborator's concatenate().

Retry Policy (per chunk, tenacity):
    - Retry only retryable CollaboratorErrors (429, 5xx, timeouts)
    - 3 attempts, exponential wait
    - Budget exhausted → fatal CollaboratorError ("chunk_retries_exhausted"):
      the orchestrator must not multiply the budget by its own retries

Concatenation failures are retryable: the chunks are fine, only the join
failed, and a new stage attempt may succeed.
"""

import asyncio
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from shortforge.clients.base import SpeechSynthesizer
from shortforge.constants import (
    DEFAULT_SPEECH_CHUNK_SIZE,
    DEFAULT_SPEECH_TIMEOUT_SECONDS,
    SPEECH_CHUNK_RETRY_BUDGET,
)
from shortforge.exceptions import CollaboratorError, ValidationError
from shortforge.models import PipelineStage
from shortforge.schemas.media import AudioAsset, SynthesizedSpeech
from shortforge.services.stage_executor import StageExecutor
from shortforge.utils.logging import get_logger

log = get_logger(__name__)

_SENTENCE_PATTERN = re.compile(r"[^.!?]+[.!?]*")


def _split_words(text: str, max_chunk_size: int) -> list[str]:
    chunks: list[str] = []
    current = ""
    for word in text.split():
        while len(word) > max_chunk_size:
            # A single word longer than a chunk: hard split
            if current:
                chunks.append(current)
                current = ""
            chunks.append(word[:max_chunk_size])
            word = word[max_chunk_size:]
        candidate = f"{current} {word}" if current else word
        if len(candidate) <= max_chunk_size:
            current = candidate
        else:
            chunks.append(current)
            current = word
    if current:
        chunks.append(current)
    return chunks


def split_text_into_chunks(text: str, max_chunk_size: int = DEFAULT_SPEECH_CHUNK_SIZE) -> list[str]:
    """Split narration into chunks of at most max_chunk_size characters.

    Sentences (terminated by . ! or ?) are packed greedily into chunks. A
    sentence longer than max_chunk_size is split on word boundaries.

    Args:
        text: Narration text.
        max_chunk_size: Maximum characters per chunk.

    Returns:
        Non-empty chunks in original order. Joining them with spaces yields
        the original text with whitespace normalized.

    Raises:
        ValueError: If max_chunk_size is not positive.

    Example:
        >>> split_text_into_chunks("One. Two. Three.", max_chunk_size=9)
        ['One. Two.', 'Three.']
    """
    if max_chunk_size <= 0:
        raise ValueError("max_chunk_size must be positive")

    text = " ".join(text.split())
    if not text:
        return []
    if len(text) <= max_chunk_size:
        return [text]

    chunks: list[str] = []
    current = ""
    for match in _SENTENCE_PATTERN.finditer(text):
        sentence = match.group().strip()
        if not sentence:
            continue
        if len(sentence) > max_chunk_size:
            if current:
                chunks.append(current)
                current = ""
            chunks.extend(_split_words(sentence, max_chunk_size))
            continue
        candidate = f"{current} {sentence}" if current else sentence
        if len(candidate) <= max_chunk_size:
            current = candidate
        else:
            chunks.append(current)
            current = sentence
    if current:
        chunks.append(current)
    return chunks


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, CollaboratorError) and exc.retryable


@dataclass(frozen=True)
class SpeechRequest:
    text: str
    voice_id: str


class SpeechSynthesisStage(StageExecutor[SpeechRequest, AudioAsset]):
    """Synthesize narration chunk by chunk and join the result.

    Args:
        synthesizer: Speech collaborator.
        chunk_size: Maximum characters per synthesis request.
        timeout: Hard timeout per chunk request, in seconds.
        chunk_retry_base_delay: Base of the per-chunk exponential backoff.
        sleep: Coroutine used between chunk retries (injectable for tests).
    """

    stage = PipelineStage.AUDIO_GENERATING

    def __init__(
        self,
        synthesizer: SpeechSynthesizer,
        chunk_size: int = DEFAULT_SPEECH_CHUNK_SIZE,
        timeout: float = DEFAULT_SPEECH_TIMEOUT_SECONDS,
        chunk_retry_base_delay: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._synthesizer = synthesizer
        self._chunk_size = chunk_size
        self._timeout = timeout
        self._chunk_retry_base_delay = chunk_retry_base_delay
        self._sleep = sleep

    async def _synthesize_chunk(self, index: int, chunk: str, voice_id: str) -> SynthesizedSpeech:
        retrying = AsyncRetrying(
            retry=retry_if_exception(_is_retryable),
            stop=stop_after_attempt(SPEECH_CHUNK_RETRY_BUDGET),
            wait=wait_exponential(multiplier=self._chunk_retry_base_delay, max=30),
            sleep=self._sleep,
            before_sleep=lambda retry_state: log.warning(
                "speech_chunk_retry",
                chunk_index=index,
                attempt=retry_state.attempt_number,
                wait_seconds=retry_state.next_action.sleep if retry_state.next_action else 0,
            ),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._invoke(
                        self._synthesizer.synthesize(chunk, voice_id),
                        timeout=self._timeout,
                        operation="synthesize",
                    )
        except RetryError as e:
            last_error = e.last_attempt.exception()
            raise CollaboratorError(
                f"Speech chunk {index} failed after {SPEECH_CHUNK_RETRY_BUDGET} attempts: "
                f"{last_error}",
                retryable=False,
                stage=self.stage,
                error_type="chunk_retries_exhausted",
            ) from last_error
        raise AssertionError("unreachable: AsyncRetrying yields until success or RetryError")

    async def _concatenate(self, segments: list[SynthesizedSpeech]) -> SynthesizedSpeech:
        try:
            return await self._invoke(
                self._synthesizer.concatenate(segments),
                timeout=self._timeout,
                operation="concatenate",
            )
        except CollaboratorError as e:
            raise CollaboratorError(
                f"Concatenating {len(segments)} speech segments failed: {e}",
                retryable=True,
                stage=self.stage,
                error_type="concatenate_failed",
            ) from e

    async def execute(self, stage_input: SpeechRequest) -> AudioAsset:
        chunks = split_text_into_chunks(stage_input.text, self._chunk_size)
        if not chunks:
            raise ValidationError("Cannot synthesize speech for an empty script")

        segments: list[SynthesizedSpeech] = []
        for index, chunk in enumerate(chunks):
            segments.append(await self._synthesize_chunk(index, chunk, stage_input.voice_id))

        speech = segments[0] if len(segments) == 1 else await self._concatenate(segments)

        if speech.duration_seconds <= 0:
            raise CollaboratorError(
                f"Speech collaborator reported a duration of {speech.duration_seconds}s",
                retryable=False,
                stage=self.stage,
                error_type="invalid_audio_duration",
            )

        log.info(
            "speech_synthesized",
            chunk_count=len(chunks),
            duration_seconds=round(speech.duration_seconds, 2),
        )
        return AudioAsset(
            audio_ref=speech.audio_ref,
            duration_seconds=speech.duration_seconds,
            segment_refs=[segment.audio_ref for segment in segments],
        )
