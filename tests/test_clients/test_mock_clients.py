"""Tests for the deterministic mock collaborators."""

import pytest

from shortforge.clients.base import (
    ScriptGenerator,
    SpeechSynthesizer,
    ThumbnailGenerator,
    VideoRenderer,
    VisualSearch,
)
from shortforge.clients.factory import build_mock_collaborators
from shortforge.clients.mock import (
    MockScriptGenerator,
    MockSpeechSynthesizer,
    MockThumbnailGenerator,
    MockVideoRenderer,
    MockVisualSearch,
)
from shortforge.exceptions import AssetReferenceError
from shortforge.schemas.media import AudioAsset, StyleConfig, VisualAsset
from shortforge.services.timeline_allocator import allocate_timeline, build_render_timeline


def test_mocks_satisfy_the_collaborator_protocols():
    collaborators = build_mock_collaborators()

    assert isinstance(collaborators.script, ScriptGenerator)
    assert isinstance(collaborators.speech, SpeechSynthesizer)
    assert isinstance(collaborators.visuals, VisualSearch)
    assert isinstance(collaborators.renderer, VideoRenderer)
    assert isinstance(collaborators.thumbnail, ThumbnailGenerator)


@pytest.mark.asyncio
async def test_script_has_exact_word_count_and_mentions_topic():
    script = await MockScriptGenerator().generate_script("Daisy care", 300)

    assert len(script.split()) == 300
    assert script.startswith("Daisy care")
    assert script.endswith(".")


@pytest.mark.asyncio
async def test_speech_is_deterministic():
    synthesizer = MockSpeechSynthesizer()

    first = await synthesizer.synthesize("Daisies love sun.", "voice-1")
    second = await synthesizer.synthesize("Daisies love sun.", "voice-1")
    other_voice = await synthesizer.synthesize("Daisies love sun.", "voice-2")

    assert first == second
    assert first.audio_ref != other_voice.audio_ref
    assert first.duration_seconds == pytest.approx(3 / 150 * 60)


@pytest.mark.asyncio
async def test_concatenate_sums_durations():
    synthesizer = MockSpeechSynthesizer()
    parts = [
        await synthesizer.synthesize(" ".join(["word"] * 150), "v"),
        await synthesizer.synthesize(" ".join(["word"] * 75), "v"),
    ]

    joined = await synthesizer.concatenate(parts)

    assert joined.duration_seconds == pytest.approx(90.0)
    assert joined.audio_ref.startswith("mock://speech/joined-")


@pytest.mark.asyncio
async def test_visual_search_mix_and_cap():
    search = MockVisualSearch(max_results=10)

    assets = await search.find_visuals(["daisy"], 24)

    assert len(assets) == 10
    assert [a.kind for a in assets].count("video") == 3
    assert all(a.native_duration_seconds == 8.0 for a in assets if a.kind == "video")


@pytest.mark.asyncio
async def test_renderer_reports_progress_and_broken_refs():
    assets = [VisualAsset(kind="image", source_ref=f"img-{i}.jpg") for i in range(4)]
    timeline = build_render_timeline(
        allocate_timeline(assets, 20.0), AudioAsset(audio_ref="a.mp3", duration_seconds=20.0)
    )
    progress: list[float] = []

    ref = await MockVideoRenderer().render(timeline, progress.append)

    assert ref.startswith("mock://render/")
    assert progress == [0.25, 0.5, 0.75, 1.0]

    with pytest.raises(AssetReferenceError) as exc_info:
        await MockVideoRenderer(broken_refs={"img-2.jpg"}).render(timeline, lambda fraction: None)
    assert exc_info.value.source_ref == "img-2.jpg"


@pytest.mark.asyncio
async def test_thumbnail_ref_reflects_template():
    ref = await MockThumbnailGenerator().generate_thumbnail("Daisy care", StyleConfig(template="minimal"))
    assert ref.startswith("mock://thumbnail/minimal-")
