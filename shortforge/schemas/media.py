"""Pydantic schemas for media assets flowing between stages.

VisualAsset and AudioAsset describe what collaborators return; VisualSlice and
RenderTimeline describe how the allocator lays visuals over the narration.
RenderTimeline is frozen and validates itself on construction, so the render
stage can trust any instance it receives.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from shortforge.constants import TIMELINE_TOLERANCE_SECONDS

# Float drift allowed between one slice's end and the next slice's start
CONTIGUITY_EPSILON = 1e-6


class VisualAsset(BaseModel):
    """One image or video returned by visual search.

    Images carry no native duration; videos may report one (None or ≤0 when
    the provider does not know it).
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["image", "video"]
    source_ref: str = Field(..., min_length=1)
    native_duration_seconds: float | None = None

    @model_validator(mode="after")
    def _images_have_no_duration(self) -> "VisualAsset":
        if self.kind == "image" and self.native_duration_seconds is not None:
            raise ValueError("image assets have no native duration")
        return self


class VideoMetadata(BaseModel):
    """Upload metadata for the finished video."""

    title: str = Field(..., min_length=1, max_length=60)
    description: str
    tags: list[str] = Field(default_factory=list, max_length=15)
    # YouTube category id; 27 is Education
    category_id: str = "27"


class SynthesizedSpeech(BaseModel):
    """Result of one speech synthesis (or concatenation) call."""

    audio_ref: str
    duration_seconds: float


class AudioAsset(BaseModel):
    """Narration artifact: the joined audio plus its chunk refs in order."""

    audio_ref: str
    duration_seconds: float = Field(..., gt=0)
    segment_refs: list[str] = Field(default_factory=list)


class VisualSlice(BaseModel):
    """A visual asset placed on the timeline."""

    model_config = ConfigDict(frozen=True)

    asset: VisualAsset
    start_offset_seconds: float = Field(..., ge=0)
    slice_duration_seconds: float = Field(..., gt=0)

    @property
    def end_offset_seconds(self) -> float:
        return self.start_offset_seconds + self.slice_duration_seconds


class RenderTimeline(BaseModel):
    """Ordered visual slices plus the single audio track they cover.

    Validated on construction:
        - at least one slice
        - first slice starts at 0
        - s[i].start + s[i].duration == s[i+1].start
        - total slice duration within 1 s of the audio duration

    Raises:
        pydantic.ValidationError: If any rule is violated.
    """

    model_config = ConfigDict(frozen=True)

    slices: tuple[VisualSlice, ...]
    audio_ref: str = Field(..., min_length=1)
    audio_duration_seconds: float = Field(..., gt=0)

    @model_validator(mode="after")
    def _check_contiguity(self) -> "RenderTimeline":
        if not self.slices:
            raise ValueError("timeline must contain at least one slice")
        if abs(self.slices[0].start_offset_seconds) > CONTIGUITY_EPSILON:
            raise ValueError("first slice must start at offset 0")
        for previous, current in zip(self.slices, self.slices[1:]):
            if abs(previous.end_offset_seconds - current.start_offset_seconds) > CONTIGUITY_EPSILON:
                raise ValueError(
                    f"slices are not contiguous at {current.start_offset_seconds:.3f}s"
                )
        if abs(self.total_duration_seconds - self.audio_duration_seconds) > TIMELINE_TOLERANCE_SECONDS:
            raise ValueError(
                f"timeline covers {self.total_duration_seconds:.3f}s but audio is "
                f"{self.audio_duration_seconds:.3f}s"
            )
        return self

    @property
    def total_duration_seconds(self) -> float:
        return sum(s.slice_duration_seconds for s in self.slices)


class StyleConfig(BaseModel):
    """Thumbnail styling passed to the thumbnail collaborator."""

    model_config = ConfigDict(frozen=True)

    template: Literal["minimal", "colorful", "professional"] = "professional"
    font_size: int = Field(64, ge=8, le=512)
    font_color: str = Field("#FFFFFF", pattern=r"^#[0-9A-Fa-f]{6}$")
    background_color: str = Field("#2C3E50", pattern=r"^#[0-9A-Fa-f]{6}$")
    overlay_opacity: float = Field(0.3, ge=0.0, le=1.0)

