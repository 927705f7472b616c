"""Script generation stage: topic → narration text."""

import math
from dataclasses import dataclass

from shortforge.clients.base import ScriptGenerator
from shortforge.constants import DEFAULT_SCRIPT_TIMEOUT_SECONDS, WORDS_PER_MINUTE
from shortforge.exceptions import CollaboratorError
from shortforge.models import PipelineStage
from shortforge.services.stage_executor import StageExecutor
from shortforge.services.task_registry import validate_request
from shortforge.utils.logging import get_logger

log = get_logger(__name__)


def target_word_count(target_duration_seconds: int) -> int:
    """Words a narrator speaks in target_duration_seconds at 150 wpm.

    Example:
        >>> target_word_count(120)
        300
    """
    return math.floor(target_duration_seconds / 60 * WORDS_PER_MINUTE)


@dataclass(frozen=True)
class ScriptRequest:
    topic: str
    target_duration_seconds: int


class ScriptGenerationStage(StageExecutor[ScriptRequest, str]):
    """Ask the script collaborator for narration sized to the target duration.

    Raises:
        ValidationError: Empty topic or out-of-range duration.
        CollaboratorError: Collaborator failure, or an empty script (fatal).
    """

    stage = PipelineStage.SCRIPT_GENERATING

    def __init__(self, generator: ScriptGenerator, timeout: float = DEFAULT_SCRIPT_TIMEOUT_SECONDS):
        self._generator = generator
        self._timeout = timeout

    async def execute(self, stage_input: ScriptRequest) -> str:
        topic = validate_request(stage_input.topic, stage_input.target_duration_seconds)
        target_words = target_word_count(stage_input.target_duration_seconds)

        script = await self._invoke(
            self._generator.generate_script(topic, target_words),
            timeout=self._timeout,
            operation="generate_script",
        )

        if not isinstance(script, str) or not script.strip():
            raise CollaboratorError(
                "Script collaborator returned empty text",
                retryable=False,
                stage=self.stage,
                error_type="empty_output",
            )

        script = script.strip()
        log.info(
            "script_generated",
            target_words=target_words,
            actual_words=len(script.split()),
        )
        return script
