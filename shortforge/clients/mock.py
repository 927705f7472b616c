"""Deterministic in-process collaborators.

Used when COLLABORATOR_BACKEND=mock (the default) and throughout the test
suite. Every output is derived from the inputs (hash-based refs, durations
computed from word counts), so two runs over the same topic produce the same
artifacts.
"""

import hashlib

from shortforge.constants import WORDS_PER_MINUTE
from shortforge.exceptions import AssetReferenceError
from shortforge.schemas.media import (
    RenderTimeline,
    StyleConfig,
    SynthesizedSpeech,
    VisualAsset,
)

_SENTENCES = (
    "{topic} is easier to understand once you see the basics.",
    "Start with the fundamentals and build from there.",
    "Small, consistent habits make the biggest difference.",
    "Experts agree that patience pays off over time.",
    "Keep an eye on the details and adjust as you go.",
    "With a little practice, anyone can get great results.",
)


def _digest(*parts: object) -> str:
    return hashlib.sha1("|".join(str(p) for p in parts).encode()).hexdigest()[:12]


class MockScriptGenerator:
    """Writes target_words words of templated narration about the topic."""

    async def generate_script(self, topic: str, target_words: int) -> str:
        words: list[str] = []
        index = 0
        while len(words) < target_words:
            words.extend(_SENTENCES[index % len(_SENTENCES)].format(topic=topic).split())
            index += 1
        script = " ".join(words[:target_words])
        return script if script.endswith(".") else script + "."


class MockSpeechSynthesizer:
    """Speaks at a fixed words-per-minute rate.

    Args:
        words_per_minute: Speaking rate used to derive durations.
        fixed_duration_seconds: When set, concatenated (or single-chunk)
            narration reports exactly this duration.
    """

    def __init__(
        self,
        words_per_minute: int = WORDS_PER_MINUTE,
        fixed_duration_seconds: float | None = None,
    ):
        self.words_per_minute = words_per_minute
        self.fixed_duration_seconds = fixed_duration_seconds
        self.synthesized: list[str] = []

    async def synthesize(self, text: str, voice_id: str) -> SynthesizedSpeech:
        self.synthesized.append(text)
        duration = len(text.split()) / self.words_per_minute * 60
        if self.fixed_duration_seconds is not None:
            duration = self.fixed_duration_seconds
        return SynthesizedSpeech(
            audio_ref=f"mock://speech/{_digest(voice_id, text)}.mp3",
            duration_seconds=duration,
        )

    async def concatenate(self, segments: list[SynthesizedSpeech]) -> SynthesizedSpeech:
        duration = sum(segment.duration_seconds for segment in segments)
        if self.fixed_duration_seconds is not None:
            duration = self.fixed_duration_seconds
        return SynthesizedSpeech(
            audio_ref=f"mock://speech/joined-{_digest(*(s.audio_ref for s in segments))}.mp3",
            duration_seconds=duration,
        )


class MockVisualSearch:
    """Returns up to ``count`` assets, roughly 70% images and 30% videos.

    Args:
        max_results: Cap on returned assets (None = return what was asked).
        video_ratio: Share of videos among the results.
        video_duration_seconds: Native duration reported for videos.
    """

    def __init__(
        self,
        max_results: int | None = None,
        video_ratio: float = 0.3,
        video_duration_seconds: float = 8.0,
    ):
        self.max_results = max_results
        self.video_ratio = video_ratio
        self.video_duration_seconds = video_duration_seconds
        self.queries: list[tuple[list[str], int]] = []

    async def find_visuals(self, keywords: list[str], count: int) -> list[VisualAsset]:
        self.queries.append((list(keywords), count))
        total = count if self.max_results is None else min(count, self.max_results)
        video_count = int(total * self.video_ratio)
        query = "-".join(keywords)
        assets = [
            VisualAsset(kind="image", source_ref=f"mock://image/{query}/{i}.jpg")
            for i in range(total - video_count)
        ]
        assets.extend(
            VisualAsset(
                kind="video",
                source_ref=f"mock://video/{query}/{i}.mp4",
                native_duration_seconds=self.video_duration_seconds,
            )
            for i in range(video_count)
        )
        return assets


class MockVideoRenderer:
    """Pretends to encode a timeline, reporting progress per slice.

    Args:
        broken_refs: Asset refs that fail with AssetReferenceError.
    """

    def __init__(self, broken_refs: set[str] | None = None):
        self.broken_refs = set(broken_refs or ())
        self.rendered: list[RenderTimeline] = []

    async def render(self, timeline: RenderTimeline, on_progress) -> str:
        self.rendered.append(timeline)
        total = len(timeline.slices)
        for index, video_slice in enumerate(timeline.slices):
            if video_slice.asset.source_ref in self.broken_refs:
                raise AssetReferenceError(video_slice.asset.source_ref)
            on_progress((index + 1) / total)
        return f"mock://render/{_digest(timeline.audio_ref, total)}.mp4"


class MockThumbnailGenerator:
    async def generate_thumbnail(self, topic: str, style: StyleConfig) -> str:
        return f"mock://thumbnail/{style.template}-{_digest(topic, style.font_color)}.png"
