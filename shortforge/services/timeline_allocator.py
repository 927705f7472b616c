"""Timeline allocation: lay visual assets over the narration.

Pure and deterministic. Given the visual assets in the order visual search
returned them and the narration length, produce contiguous slices that cover
the narration exactly.

Allocation Rules:
    - Images get a nominal 5 s slice.
    - Videos get min(native duration, 15 s); a video without a positive
      native duration falls back to 5 s.
    - Assets are walked in input order; the final slice is truncated so the
      slices sum to the target.
    - When the assets run out before the target is covered the walk wraps
      around, at most 3 full passes over the list. Still short after that →
      AllocationError. The loop is bounded, so allocation always terminates.

Usage:
    from shortforge.services.timeline_allocator import allocate_timeline

    slices = allocate_timeline(assets, audio.duration_seconds)
"""

from shortforge.constants import (
    IMAGE_SLICE_SECONDS,
    MAX_ALLOCATION_CYCLES,
    MAX_VIDEO_SLICE_SECONDS,
)
from shortforge.exceptions import AllocationError
from shortforge.schemas.media import AudioAsset, RenderTimeline, VisualAsset, VisualSlice

# Remaining time below this is treated as covered (float accumulation)
_EPSILON = 1e-6


def nominal_slice_duration(asset: VisualAsset) -> float:
    """Return the slice length an asset gets before final truncation."""
    if asset.kind == "image":
        return IMAGE_SLICE_SECONDS
    native = asset.native_duration_seconds
    if native is None or native <= 0:
        return IMAGE_SLICE_SECONDS
    return min(native, MAX_VIDEO_SLICE_SECONDS)


def allocate_timeline(
    assets: list[VisualAsset],
    target_duration_seconds: float,
) -> list[VisualSlice]:
    """Assign contiguous slices covering exactly target_duration_seconds.

    Args:
        assets: Visual assets in search order.
        target_duration_seconds: Narration length to cover.

    Returns:
        Ordered slices; slice[0] starts at 0, each slice starts where the
        previous one ends, and the durations sum to the target.

    Raises:
        AllocationError: Empty asset list, non-positive target, or the assets
            cannot cover the target within 3 passes.

    Example:
        >>> images = [VisualAsset(kind="image", source_ref=f"img{i}") for i in range(10)]
        >>> slices = allocate_timeline(images, 120.0)
        >>> len(slices)
        24
    """
    if not assets:
        raise AllocationError("Cannot allocate a timeline without visual assets")
    if target_duration_seconds <= 0:
        raise AllocationError(
            f"Target duration must be positive, got {target_duration_seconds}"
        )

    slices: list[VisualSlice] = []
    offset = 0.0
    for _cycle in range(MAX_ALLOCATION_CYCLES):
        for asset in assets:
            remaining = target_duration_seconds - offset
            if remaining <= _EPSILON:
                return slices
            duration = min(nominal_slice_duration(asset), remaining)
            slices.append(
                VisualSlice(
                    asset=asset,
                    start_offset_seconds=offset,
                    slice_duration_seconds=duration,
                )
            )
            offset += duration

    if target_duration_seconds - offset <= _EPSILON:
        return slices

    raise AllocationError(
        f"{len(assets)} assets cover {offset:.1f}s of {target_duration_seconds:.1f}s "
        f"after {MAX_ALLOCATION_CYCLES} passes"
    )


def drop_slice(slices: list[VisualSlice], index: int) -> list[VisualSlice]:
    """Remove one slice and re-abut the rest, keeping the total duration.

    The preceding slice absorbs the removed duration; when the first slice is
    dropped the following slice absorbs it instead.

    Args:
        slices: Contiguous slices.
        index: Position of the slice to remove.

    Returns:
        New contiguous list, one slice shorter, same total duration.

    Raises:
        AllocationError: Fewer than two slices (nothing can absorb the gap).
        IndexError: index out of range.
    """
    if len(slices) < 2:
        raise AllocationError("Cannot drop the only slice of a timeline")
    if not -len(slices) <= index < len(slices):
        raise IndexError(f"slice index {index} out of range")
    index %= len(slices)

    durations = [s.slice_duration_seconds for s in slices]
    absorber = index - 1 if index > 0 else 1
    durations[absorber] += durations[index]

    kept = [(s.asset, durations[i]) for i, s in enumerate(slices) if i != index]
    result: list[VisualSlice] = []
    offset = 0.0
    for asset, duration in kept:
        result.append(
            VisualSlice(asset=asset, start_offset_seconds=offset, slice_duration_seconds=duration)
        )
        offset += duration
    return result


def drop_asset(slices: list[VisualSlice], source_ref: str) -> list[VisualSlice]:
    """Remove every slice showing source_ref and re-abut the rest.

    Assets cycled by visual search or wrapped by the allocator appear in
    several slices; all of them go. Each removal follows drop_slice, so the
    total duration is preserved.

    Raises:
        AllocationError: No slice shows source_ref, or every slice does.
    """
    if not any(s.asset.source_ref == source_ref for s in slices):
        raise AllocationError(f"No slice shows asset {source_ref}")
    if all(s.asset.source_ref == source_ref for s in slices):
        raise AllocationError(f"Every slice shows asset {source_ref}")

    result = list(slices)
    while True:
        index = next(
            (i for i, s in enumerate(result) if s.asset.source_ref == source_ref),
            None,
        )
        if index is None:
            return result
        result = drop_slice(result, index)


def build_render_timeline(slices: list[VisualSlice], audio: AudioAsset) -> RenderTimeline:
    """Wrap slices and the narration track into a validated RenderTimeline.

    Raises:
        pydantic.ValidationError: Slices are not contiguous or do not cover
            the audio within 1 s.
    """
    return RenderTimeline(
        slices=tuple(slices),
        audio_ref=audio.audio_ref,
        audio_duration_seconds=audio.duration_seconds,
    )
