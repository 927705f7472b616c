"""Thumbnail stage: topic + style → thumbnail image."""

from dataclasses import dataclass, field

from shortforge.clients.base import ThumbnailGenerator
from shortforge.constants import DEFAULT_THUMBNAIL_TIMEOUT_SECONDS
from shortforge.exceptions import CollaboratorError, ValidationError
from shortforge.models import PipelineStage
from shortforge.schemas.media import StyleConfig
from shortforge.services.stage_executor import StageExecutor
from shortforge.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class ThumbnailRequest:
    topic: str
    style: StyleConfig = field(default_factory=StyleConfig)


class ThumbnailGenerationStage(StageExecutor[ThumbnailRequest, str]):
    stage = PipelineStage.THUMBNAIL_GENERATING

    def __init__(
        self,
        generator: ThumbnailGenerator,
        timeout: float = DEFAULT_THUMBNAIL_TIMEOUT_SECONDS,
    ):
        self._generator = generator
        self._timeout = timeout

    async def execute(self, stage_input: ThumbnailRequest) -> str:
        if not stage_input.topic or not stage_input.topic.strip():
            raise ValidationError("Thumbnail topic must be non-empty")
        if not isinstance(stage_input.style, StyleConfig):
            raise ValidationError("Thumbnail style must be a StyleConfig")

        thumbnail_ref = await self._invoke(
            self._generator.generate_thumbnail(stage_input.topic.strip(), stage_input.style),
            timeout=self._timeout,
            operation="generate_thumbnail",
        )
        if not thumbnail_ref:
            raise CollaboratorError(
                "Thumbnail collaborator returned an empty reference",
                retryable=False,
                stage=self.stage,
                error_type="empty_output",
            )

        log.info("thumbnail_generated", template=stage_input.style.template)
        return thumbnail_ref
