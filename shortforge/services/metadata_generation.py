"""Upload metadata for a finished video: title, description and tags.

Runs inside the thumbnail stage once the video is rendered. Everything is
derived from the topic and the narration script, so the same task always
produces the same metadata and no collaborator call is needed.

Rules:
- Title: the topic in title case, cut at a word boundary to 60 characters
- Description: the opening sentences of the script (about 300 characters),
  a call-to-action line, then one hashtag per topic keyword
- Tags: the topic, its keywords, then the most frequent script words;
  de-duplicated case-insensitively and capped at 15
"""

import re
from collections import Counter

from shortforge.constants import STOP_WORDS
from shortforge.schemas.media import VideoMetadata
from shortforge.services.visual_search import extract_keywords
from shortforge.utils.logging import get_logger

log = get_logger(__name__)

MAX_TITLE_LENGTH = 60
MAX_TAGS = 15
SUMMARY_LENGTH = 300
# Script words shorter than this are too generic to tag
MIN_SCRIPT_TAG_LENGTH = 4
CALL_TO_ACTION = "Like and subscribe for more short explainers."

_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")
_WORD = re.compile(r"[^\W\d_]+(?:'[^\W\d_]+)?")


def build_title(topic: str) -> str:
    """Title-case the topic and trim it to 60 characters.

    Example:
        >>> build_title("how to care for a daisy plant")
        'How To Care For A Daisy Plant'
    """
    title = " ".join(word[:1].upper() + word[1:] for word in topic.split())
    if len(title) <= MAX_TITLE_LENGTH:
        return title
    cut = title[: MAX_TITLE_LENGTH - 3].rsplit(" ", 1)[0].rstrip(" ,;:-")
    return f"{cut}..."


def summarize_script(script_text: str | None, topic: str) -> str:
    """Leading whole sentences of the script, up to roughly 300 characters."""
    sentences = [s.strip() for s in _SENTENCE_END.split(script_text or "") if s.strip()]
    if not sentences:
        return f"Learn about {topic.strip()} in this video."

    summary = sentences[0]
    for sentence in sentences[1:]:
        if len(summary) + 1 + len(sentence) > SUMMARY_LENGTH:
            break
        summary = f"{summary} {sentence}"
    if len(summary) > SUMMARY_LENGTH:
        summary = summary[: SUMMARY_LENGTH - 3].rsplit(" ", 1)[0] + "..."
    return summary


def build_tags(topic: str, script_text: str | None) -> list[str]:
    """Topic first, then its keywords, then frequent script words."""
    candidates = [topic.strip().lower(), *extract_keywords(topic)]
    words = [
        word
        for word in (w.lower() for w in _WORD.findall(script_text or ""))
        if len(word) >= MIN_SCRIPT_TAG_LENGTH and word not in STOP_WORDS
    ]
    # most_common keeps first-seen order among equal counts
    candidates.extend(word for word, _ in Counter(words).most_common())

    tags: list[str] = []
    seen: set[str] = set()
    for tag in candidates:
        if tag and tag not in seen:
            seen.add(tag)
            tags.append(tag)
        if len(tags) == MAX_TAGS:
            break
    return tags


def build_video_metadata(topic: str, script_text: str | None) -> VideoMetadata:
    """Assemble upload metadata for a task's video."""
    hashtags = " ".join(f"#{keyword}" for keyword in extract_keywords(topic))
    description = "\n\n".join(
        part for part in (summarize_script(script_text, topic), CALL_TO_ACTION, hashtags) if part
    )
    metadata = VideoMetadata(
        title=build_title(topic),
        description=description,
        tags=build_tags(topic, script_text),
    )
    log.info("metadata_generated", title=metadata.title, tag_count=len(metadata.tags))
    return metadata
