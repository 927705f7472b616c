"""Thumbnail generator drawn locally with Pillow.

Templates:
    minimal: flat background, centered title
    colorful: vertical gradient from the background colour to a lighter tint
    professional: flat background with a translucent dark band behind the title

Output is a 1280x720 PNG (YouTube's recommended thumbnail size) written to
the active task's thumbnail directory.
"""

import asyncio
import textwrap
from pathlib import Path

from PIL import Image, ImageDraw, ImageFont

from shortforge.schemas.media import StyleConfig
from shortforge.utils.filesystem import active_task_id, get_thumbnail_dir
from shortforge.utils.logging import get_logger

log = get_logger(__name__)

THUMBNAIL_WIDTH = 1280
THUMBNAIL_HEIGHT = 720
FONT_CANDIDATES = ("DejaVuSans-Bold.ttf", "Arial Bold.ttf", "arialbd.ttf")


def _hex_to_rgb(value: str) -> tuple[int, int, int]:
    value = value.lstrip("#")
    return int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16)


def _lighten(rgb: tuple[int, int, int], amount: float) -> tuple[int, int, int]:
    return tuple(int(c + (255 - c) * amount) for c in rgb)


def _load_font(size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    for name in FONT_CANDIDATES:
        try:
            return ImageFont.truetype(name, size)
        except OSError:
            continue
    # Pillow's bundled font scales since 10.1
    return ImageFont.load_default(size=size)


def _draw_gradient(image: Image.Image, top: tuple[int, int, int], bottom: tuple[int, int, int]) -> None:
    draw = ImageDraw.Draw(image)
    width, height = image.size
    for y in range(height):
        ratio = y / max(height - 1, 1)
        color = tuple(int(t + (b - t) * ratio) for t, b in zip(top, bottom))
        draw.line([(0, y), (width, y)], fill=color)


def render_thumbnail(
    topic: str,
    style: StyleConfig,
    width: int = THUMBNAIL_WIDTH,
    height: int = THUMBNAIL_HEIGHT,
) -> Image.Image:
    """Draw the thumbnail image for a topic (no I/O)."""
    background = _hex_to_rgb(style.background_color)
    image = Image.new("RGB", (width, height), background)

    if style.template == "colorful":
        _draw_gradient(image, background, _lighten(background, 0.6))

    font = _load_font(style.font_size)
    # Rough glyph width for wrapping; bold sans averages ~0.55 em
    chars_per_line = max(8, int(width * 0.85 / (style.font_size * 0.55)))
    lines = textwrap.wrap(topic.upper() if style.template == "colorful" else topic, chars_per_line)
    line_height = int(style.font_size * 1.2)
    block_height = line_height * len(lines)
    top = (height - block_height) // 2

    if style.template == "professional":
        overlay = Image.new("RGBA", (width, height), (0, 0, 0, 0))
        band_padding = style.font_size // 2
        ImageDraw.Draw(overlay).rectangle(
            [(0, top - band_padding), (width, top + block_height + band_padding)],
            fill=(0, 0, 0, int(255 * style.overlay_opacity)),
        )
        image = Image.alpha_composite(image.convert("RGBA"), overlay).convert("RGB")

    draw = ImageDraw.Draw(image)
    text_color = _hex_to_rgb(style.font_color)
    for index, line in enumerate(lines):
        left, _, right, _ = draw.textbbox((0, 0), line, font=font)
        x = (width - (right - left)) // 2
        y = top + index * line_height
        draw.text((x, y), line, font=font, fill=text_color)

    return image


class PillowThumbnailGenerator:
    """Writes thumbnail.png for the active task."""

    def __init__(
        self,
        workspace_root: Path | str | None = None,
        width: int = THUMBNAIL_WIDTH,
        height: int = THUMBNAIL_HEIGHT,
    ) -> None:
        self.workspace_root = workspace_root
        self.width = width
        self.height = height

    async def generate_thumbnail(self, topic: str, style: StyleConfig) -> str:
        output_path = get_thumbnail_dir(active_task_id(), self.workspace_root) / "thumbnail.png"
        # Pillow is CPU-bound; keep it off the event loop
        await asyncio.to_thread(self._render_to, topic, style, output_path)
        log.info("thumbnail_saved", path=str(output_path), template=style.template)
        return str(output_path)

    def _render_to(self, topic: str, style: StyleConfig, output_path: Path) -> None:
        render_thumbnail(topic, style, self.width, self.height).save(output_path, "PNG")
