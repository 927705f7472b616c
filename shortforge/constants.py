"""Project-wide constants for the production pipeline.

Timing constants for the timeline allocator, speaking-rate constants for the
script stage, and the stop-word list used for visual search keywords.
"""

# Task request bounds
MIN_TARGET_DURATION_SECONDS = 30
MAX_TARGET_DURATION_SECONDS = 1800
MAX_TOPIC_LENGTH = 500

# Average narration speaking rate used to size scripts
WORDS_PER_MINUTE = 150

# Timeline allocation
IMAGE_SLICE_SECONDS = 5.0
MAX_VIDEO_SLICE_SECONDS = 15.0
AVERAGE_SLICE_SECONDS = 5.0
MAX_ALLOCATION_CYCLES = 3
TIMELINE_TOLERANCE_SECONDS = 1.0

# Speech synthesis
DEFAULT_SPEECH_CHUNK_SIZE = 4000
SPEECH_CHUNK_RETRY_BUDGET = 3

# Visual search
MAX_SEARCH_KEYWORDS = 5
MIN_KEYWORD_LENGTH = 3

STOP_WORDS: frozenset[str] = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
        "how", "what", "why", "when", "where", "who", "which", "that", "this", "these", "those",
        "is", "are", "was", "were", "be", "been", "being", "have", "has", "had", "do", "does",
        "did",
    }
)

# Default stage timeouts in seconds (None = unbounded, monitored via progress)
DEFAULT_SCRIPT_TIMEOUT_SECONDS = 60.0
DEFAULT_SPEECH_TIMEOUT_SECONDS = 120.0
DEFAULT_VISUAL_SEARCH_TIMEOUT_SECONDS = 30.0
DEFAULT_THUMBNAIL_TIMEOUT_SECONDS = 60.0
