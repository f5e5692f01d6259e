"""
Locally rendered stand-in images used when the image service cannot deliver a page.
"""

from __future__ import annotations

import logging
from io import BytesIO

from PIL import Image, ImageDraw, ImageFont

logger = logging.getLogger(__name__)

PLACEHOLDER_SIZE = (512, 512)
GRADIENT_START = (251, 191, 36)  # amber-400
GRADIENT_END = (245, 158, 11)  # amber-500
BORDER_COLOR = (0, 0, 0)
BORDER_WIDTH = 8
TEXT_COLOR = (0, 0, 0)
WARNING_COLOR = (220, 38, 38)  # red-600
TEXT_MARGIN = 20
TITLE_LINE_HEIGHT = 30
UNAVAILABLE_CAPTION = "(AI Service Temporarily Unavailable)"

_FONT_CANDIDATES = {
    True: ("DejaVuSans-Bold.ttf", "Arial Bold.ttf", "arialbd.ttf"),
    False: ("DejaVuSans.ttf", "Arial.ttf", "arial.ttf"),
}


def _load_font(size: int, *, bold: bool = False) -> ImageFont.ImageFont | ImageFont.FreeTypeFont:
    for name in _FONT_CANDIDATES[bold]:
        try:
            return ImageFont.truetype(name, size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)


def _draw_gradient(image: Image.Image) -> None:
    # Diagonal gradient from the top-left corner, one anti-diagonal line per step.
    width, height = image.size
    draw = ImageDraw.Draw(image)
    span = (width - 1) + (height - 1) or 1
    for offset in range(span + 1):
        ratio = offset / span
        color = tuple(
            round(start + (end - start) * ratio)
            for start, end in zip(GRADIENT_START, GRADIENT_END)
        )
        draw.line((offset, 0, 0, offset), fill=color)


def wrap_title(
    draw: ImageDraw.ImageDraw,
    title: str,
    font: ImageFont.ImageFont | ImageFont.FreeTypeFont,
    max_width: float,
) -> list[str]:
    """Greedy word wrap of ``title`` so every line fits within ``max_width`` pixels."""
    lines: list[str] = []
    current = ""
    for word in title.split():
        candidate = f"{current} {word}".strip()
        if current and draw.textlength(candidate, font=font) > max_width:
            lines.append(current)
            current = word
        else:
            current = candidate
    lines.append(current)
    return lines


def render_placeholder_image(title: str, image_number: int) -> bytes:
    """
    Draw a comic-styled placeholder page and return it as PNG bytes.

    The page carries an amber gradient, a heavy black frame, the wrapped title, the
    image number, and an explicit service-unavailable caption.
    """
    width, height = PLACEHOLDER_SIZE
    image = Image.new("RGB", PLACEHOLDER_SIZE, GRADIENT_START)
    _draw_gradient(image)

    draw = ImageDraw.Draw(image)
    # Pillow grows the outline inwards from the box edge.
    draw.rectangle(
        (0, 0, width - 1, height - 1),
        outline=BORDER_COLOR,
        width=BORDER_WIDTH,
    )

    title_font = _load_font(24, bold=True)
    lines = wrap_title(draw, title or "Untitled", title_font, width - 2 * TEXT_MARGIN)
    start_y = height / 2 - (len(lines) - 1) * TITLE_LINE_HEIGHT / 2
    for index, line in enumerate(lines):
        draw.text(
            (width / 2, start_y + index * TITLE_LINE_HEIGHT),
            line,
            fill=TEXT_COLOR,
            font=title_font,
            anchor="mm",
        )

    draw.text(
        (width / 2, height - 30),
        f"Image {image_number}",
        fill=TEXT_COLOR,
        font=_load_font(18, bold=True),
        anchor="mm",
    )
    draw.text(
        (width / 2, height - 60),
        UNAVAILABLE_CAPTION,
        fill=WARNING_COLOR,
        font=_load_font(16),
        anchor="mm",
    )

    buffer = BytesIO()
    image.save(buffer, format="PNG")
    logger.debug("Rendered placeholder for image %s (%s)", image_number, title)
    return buffer.getvalue()
