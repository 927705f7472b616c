"""Visual search stage: topic → visual assets for the timeline.

The request size is derived from the task's target duration at one asset per
5 seconds. When the collaborator returns fewer assets than requested, the
returned list is cycled to the requested count so the allocator starts from
a full-length list.
"""

import math
import re
from dataclasses import dataclass

from shortforge.clients.base import VisualSearch
from shortforge.constants import (
    AVERAGE_SLICE_SECONDS,
    DEFAULT_VISUAL_SEARCH_TIMEOUT_SECONDS,
    MAX_SEARCH_KEYWORDS,
    MIN_KEYWORD_LENGTH,
    STOP_WORDS,
)
from shortforge.exceptions import CollaboratorError, ValidationError
from shortforge.models import PipelineStage
from shortforge.schemas.media import VisualAsset
from shortforge.services.stage_executor import StageExecutor
from shortforge.utils.logging import get_logger

log = get_logger(__name__)

_PUNCTUATION = re.compile(r"[^\w\s]")


def _dedupe(words: list[str]) -> list[str]:
    return list(dict.fromkeys(words))


def extract_keywords(topic: str) -> list[str]:
    """Pick up to 5 search keywords from a topic.

    Lowercases, replaces punctuation with spaces, drops words shorter than
    3 characters and stop words, and de-duplicates keeping first occurrence.
    When nothing survives the filter the raw topic words are used instead.

    Example:
        >>> extract_keywords("How to care for a Daisy plant?")
        ['care', 'daisy', 'plant']
    """
    words = _PUNCTUATION.sub(" ", topic.lower()).split()
    keywords = _dedupe(
        [word for word in words if len(word) >= MIN_KEYWORD_LENGTH and word not in STOP_WORDS]
    )
    if not keywords:
        keywords = _dedupe(words)
    if not keywords and topic.strip():
        keywords = [topic.strip().lower()]
    return keywords[:MAX_SEARCH_KEYWORDS]


def required_asset_count(target_duration_seconds: float) -> int:
    """One asset per 5 seconds of video, rounded up.

    Example:
        >>> required_asset_count(120)
        24
    """
    return max(1, math.ceil(target_duration_seconds / AVERAGE_SLICE_SECONDS))


def cycle_to_count(assets: list[VisualAsset], count: int) -> list[VisualAsset]:
    """Repeat assets in order until there are exactly count of them."""
    return [assets[i % len(assets)] for i in range(count)]


@dataclass(frozen=True)
class VisualRequest:
    topic: str
    target_duration_seconds: int


class VisualSearchStage(StageExecutor[VisualRequest, list[VisualAsset]]):
    """Find visuals for a topic, sized to the target duration.

    Raises:
        ValidationError: Topic yields no keywords.
        CollaboratorError: Collaborator failure, or zero assets (fatal).
    """

    stage = PipelineStage.VISUALS_PROCESSING

    def __init__(
        self,
        search: VisualSearch,
        timeout: float = DEFAULT_VISUAL_SEARCH_TIMEOUT_SECONDS,
    ):
        self._search = search
        self._timeout = timeout

    async def execute(self, stage_input: VisualRequest) -> list[VisualAsset]:
        keywords = extract_keywords(stage_input.topic)
        if not keywords:
            raise ValidationError("Topic yields no search keywords")
        required = required_asset_count(stage_input.target_duration_seconds)

        assets = await self._invoke(
            self._search.find_visuals(keywords, required),
            timeout=self._timeout,
            operation="find_visuals",
        )
        assets = list(assets or [])

        if not assets:
            raise CollaboratorError(
                f"No visuals found for keywords {keywords}",
                retryable=False,
                stage=self.stage,
                error_type="no_visuals_found",
            )

        returned = len(assets)
        if returned < required:
            assets = cycle_to_count(assets, required)
        else:
            assets = assets[:required]

        log.info(
            "visuals_found",
            keywords=keywords,
            requested=required,
            returned=returned,
            images=sum(1 for a in assets if a.kind == "image"),
            videos=sum(1 for a in assets if a.kind == "video"),
        )
        return assets
