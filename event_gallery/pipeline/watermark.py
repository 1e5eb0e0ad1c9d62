"""
Watermark Compositor

Builds the overlay panel stamped across every WATERMARK rendition: a
rounded translucent band spanning the image width, 15% of its height, with
the brand label centered at 40% of the band height.

Pure functions only: no I/O, identical inputs give identical output.
"""

from dataclasses import dataclass
from typing import Tuple
from xml.sax.saxutils import escape

from event_gallery.core.exceptions import InvalidInputError

PANEL_HEIGHT_RATIO = 0.15
FONT_SIZE_RATIO = 0.40
CORNER_RADIUS_RATIO = 0.10

# RGBA
PANEL_FILL: Tuple[int, int, int, int] = (0, 0, 0, 128)
TEXT_FILL: Tuple[int, int, int, int] = (255, 255, 255, 230)
TEXT_STROKE: Tuple[int, int, int, int] = (0, 0, 0, 230)


@dataclass(frozen=True)
class WatermarkOverlay:
    """Overlay geometry plus its SVG rendering."""
    width: int
    height: int
    font_size: int
    corner_radius: int
    stroke_width: int
    label: str
    svg: bytes


def build_watermark_label(brand: str, year: int) -> str:
    return f"© {brand} {year}"


def _svg_color(rgba: Tuple[int, int, int, int]) -> Tuple[str, str]:
    r, g, b, a = rgba
    return f"#{r:02x}{g:02x}{b:02x}", f"{a / 255:.2f}"


def _render_svg(width: int, height: int, font_size: int, radius: int, stroke: int, label: str) -> bytes:
    panel_color, panel_opacity = _svg_color(PANEL_FILL)
    text_color, text_opacity = _svg_color(TEXT_FILL)
    stroke_color, _ = _svg_color(TEXT_STROKE)

    svg = (
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{width}" height="{height}" '
        f'viewBox="0 0 {width} {height}">'
        f'<rect width="100%" height="100%" rx="{radius}" ry="{radius}" '
        f'fill="{panel_color}" fill-opacity="{panel_opacity}"/>'
        f'<text x="50%" y="50%" font-family="Arial, Helvetica, sans-serif" font-size="{font_size}" '
        f'fill="{text_color}" fill-opacity="{text_opacity}" '
        f'stroke="{stroke_color}" stroke-width="{stroke}" '
        f'text-anchor="middle" dominant-baseline="middle">{escape(label)}</text>'
        f'</svg>'
    )
    return svg.encode("utf-8")


def build_watermark_overlay(width: int, height: int, label: str) -> WatermarkOverlay:
    """
    Synthesize the overlay for a source image of the given pixel size.

    Args:
        width: Source image width in pixels
        height: Source image height in pixels
        label: Text stamped on the panel

    Raises:
        InvalidInputError: If either dimension is not a positive integer
    """
    for name, value in (("width", width), ("height", height)):
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise InvalidInputError(
                f"Watermark {name} must be a positive integer, got {value!r}",
                stage="watermark"
            )

    panel_height = max(1, round(height * PANEL_HEIGHT_RATIO))
    font_size = max(1, round(panel_height * FONT_SIZE_RATIO))
    corner_radius = max(1, round(panel_height * CORNER_RADIUS_RATIO))
    stroke_width = max(1, font_size // 20)

    return WatermarkOverlay(
        width=width,
        height=panel_height,
        font_size=font_size,
        corner_radius=corner_radius,
        stroke_width=stroke_width,
        label=label,
        svg=_render_svg(width, panel_height, font_size, corner_radius, stroke_width, label),
    )
