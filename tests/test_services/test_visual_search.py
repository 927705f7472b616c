"""Tests for keyword extraction and the visual search stage."""

import pytest

from shortforge.clients.mock import MockVisualSearch
from shortforge.exceptions import CollaboratorError
from shortforge.schemas.media import VisualAsset
from shortforge.services.visual_search import (
    VisualRequest,
    VisualSearchStage,
    cycle_to_count,
    extract_keywords,
    required_asset_count,
)
from tests.support.fakes import StaticVisualSearch


def _images(count: int) -> list[VisualAsset]:
    return [VisualAsset(kind="image", source_ref=f"img-{i}.jpg") for i in range(count)]


class TestExtractKeywords:
    def test_drops_stop_words_and_short_words(self):
        assert extract_keywords("How to care for a Daisy plant?") == ["care", "daisy", "plant"]

    def test_caps_at_five_and_dedupes(self):
        topic = "garden garden roses tulips daisies orchids lilies peonies"
        assert extract_keywords(topic) == ["garden", "roses", "tulips", "daisies", "orchids"]

    def test_falls_back_to_raw_words(self):
        assert extract_keywords("to be or") == ["to", "be", "or"]

    def test_punctuation_only_topic_falls_back_to_whole_topic(self):
        assert extract_keywords("?!") == ["?!"]


class TestSizing:
    @pytest.mark.parametrize(("duration", "count"), [(30, 6), (120, 24), (61, 13), (1800, 360)])
    def test_required_asset_count(self, duration, count):
        assert required_asset_count(duration) == count

    def test_cycle_to_count(self):
        cycled = cycle_to_count(_images(3), 7)
        assert [a.source_ref for a in cycled] == [
            "img-0.jpg", "img-1.jpg", "img-2.jpg",
            "img-0.jpg", "img-1.jpg", "img-2.jpg",
            "img-0.jpg",
        ]


class TestVisualSearchStage:
    @pytest.mark.asyncio
    async def test_requests_one_asset_per_five_seconds(self):
        search = MockVisualSearch()
        stage = VisualSearchStage(search)

        assets = await stage.execute(VisualRequest("Daisy care", 120))

        assert search.queries == [(["daisy", "care"], 24)]
        assert len(assets) == 24
        assert sum(1 for a in assets if a.kind == "video") == 7

    @pytest.mark.asyncio
    async def test_short_results_are_cycled(self):
        stage = VisualSearchStage(StaticVisualSearch([_images(10)]))

        assets = await stage.execute(VisualRequest("Daisy care", 120))

        assert len(assets) == 24
        assert assets[10].source_ref == "img-0.jpg"

    @pytest.mark.asyncio
    async def test_long_results_are_truncated(self):
        stage = VisualSearchStage(StaticVisualSearch([_images(40)]))
        assets = await stage.execute(VisualRequest("Daisy care", 60))
        assert len(assets) == 12

    @pytest.mark.asyncio
    async def test_zero_assets_is_fatal(self):
        stage = VisualSearchStage(StaticVisualSearch([[]]))

        with pytest.raises(CollaboratorError) as exc_info:
            await stage.execute(VisualRequest("Daisy care", 120))

        assert exc_info.value.retryable is False
        assert exc_info.value.error_type == "no_visuals_found"

    @pytest.mark.asyncio
    async def test_transport_error_is_retryable(self):
        stage = VisualSearchStage(StaticVisualSearch([ConnectionError("reset by peer")]))

        with pytest.raises(CollaboratorError) as exc_info:
            await stage.execute(VisualRequest("Daisy care", 120))

        assert exc_info.value.retryable is True
