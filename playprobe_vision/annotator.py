"""Frame annotation: grid overlays and click markers.

Both helpers are pure functions of their inputs; they return a new
:class:`~playprobe_runtime.capture.Frame` and never touch module state, so
concurrent attempts can share them freely. If the input cannot be decoded the
original frame is returned unchanged and a warning is logged.
"""
from __future__ import annotations

import logging
from io import BytesIO
from typing import Optional, Tuple

from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

from playprobe_runtime.capture import Frame

from .grid import GridSpec, column_label

Logger = logging.Logger

GRID_LINE_COLOR = (255, 255, 0, 128)  # semi-transparent yellow
LABEL_COLOR = (255, 255, 0, 255)
LABEL_BACKING = (0, 0, 0, 150)
MARKER_COLOR = (255, 0, 0, 255)
MARKER_RADIUS = 20
MARKER_CROSSHAIR = 25

_module_logger = logging.getLogger(__name__)


def _decode(frame: Frame, logger: Logger, purpose: str) -> Optional[Image.Image]:
    try:
        return frame.to_image().convert("RGBA")
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        logger.warning("Skipping %s; frame could not be decoded: %s", purpose, exc)
        return None


def _encode(image: Image.Image) -> bytes:
    with BytesIO() as buffer:
        image.convert("RGB").save(buffer, format="PNG")
        return buffer.getvalue()


def _text_size(draw: ImageDraw.ImageDraw, text: str, font: ImageFont.ImageFont) -> Tuple[int, int]:
    left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
    return right - left, bottom - top


def _draw_label(
    draw: ImageDraw.ImageDraw,
    font: ImageFont.ImageFont,
    text: str,
    x: int,
    y: int,
) -> None:
    """Draw ``text`` with its top-left corner at ``(x, y)`` over a dark backing box."""

    width, height = _text_size(draw, text, font)
    draw.rectangle((x - 2, y - 1, x + width + 2, y + height + 2), fill=LABEL_BACKING)
    draw.text((x, y), text, fill=LABEL_COLOR, font=font)


def annotate_grid(frame: Frame, grid: GridSpec, *, logger: Optional[Logger] = None) -> Frame:
    """Overlay a labelled ``grid`` on ``frame``.

    Draws boundary lines between every column and row, column letters centred
    along the top and bottom edges, and row numbers along the left and right
    edges.

    Args:
        frame: Source frame; left untouched.
        grid: Grid dimensions to draw.
        logger: Optional logger instance.

    Returns:
        A new annotated frame, or ``frame`` itself when it cannot be decoded.
    """
    log = logger or _module_logger
    base = _decode(frame, log, "grid overlay")
    if base is None:
        return frame

    width, height = base.size
    cell_width = width / grid.columns
    cell_height = height / grid.rows
    overlay = Image.new("RGBA", base.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)
    font = ImageFont.load_default()

    for col in range(1, grid.columns):
        x = int(col * cell_width)
        draw.line([(x, 0), (x, height)], fill=GRID_LINE_COLOR, width=1)
    for row in range(1, grid.rows):
        y = int(row * cell_height)
        draw.line([(0, y), (width, y)], fill=GRID_LINE_COLOR, width=1)

    for col in range(grid.columns):
        text = column_label(col)
        text_width, text_height = _text_size(draw, text, font)
        x = int(col * cell_width + cell_width / 2 - text_width / 2)
        _draw_label(draw, font, text, x, 2)
        _draw_label(draw, font, text, x, height - text_height - 5)

    for row in range(1, grid.rows + 1):
        text = str(row)
        text_width, text_height = _text_size(draw, text, font)
        y = int((row - 1) * cell_height + cell_height / 2 - text_height / 2)
        _draw_label(draw, font, text, 5, y)
        _draw_label(draw, font, text, width - text_width - 5, y)

    composed = Image.alpha_composite(base, overlay)
    return frame.derive(_encode(composed), annotated=True)


def mark_click(
    frame: Frame,
    x: int,
    y: int,
    label: str,
    *,
    logger: Optional[Logger] = None,
) -> Frame:
    """Draw a red circle and crosshair at ``(x, y)`` with a caption."""

    log = logger or _module_logger
    base = _decode(frame, log, "click marker")
    if base is None:
        return frame

    draw = ImageDraw.Draw(base)
    draw.ellipse(
        (x - MARKER_RADIUS, y - MARKER_RADIUS, x + MARKER_RADIUS, y + MARKER_RADIUS),
        outline=MARKER_COLOR,
        width=3,
    )
    draw.line([(x - MARKER_CROSSHAIR, y), (x + MARKER_CROSSHAIR, y)], fill=MARKER_COLOR, width=2)
    draw.line([(x, y - MARKER_CROSSHAIR), (x, y + MARKER_CROSSHAIR)], fill=MARKER_COLOR, width=2)
    caption = f"{label} ({x}, {y})" if label else f"({x}, {y})"
    draw.text((x + MARKER_CROSSHAIR + 4, y - MARKER_CROSSHAIR), caption, fill=MARKER_COLOR, font=ImageFont.load_default())
    return frame.derive(_encode(base))


__all__ = ["GRID_LINE_COLOR", "LABEL_COLOR", "annotate_grid", "mark_click"]
