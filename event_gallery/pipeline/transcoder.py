"""
Image Transcoder

Turns one uploaded image into its two renditions:
- original:  the source re-encoded as JPEG at high quality, no overlay
- watermark: the source with the watermark panel alpha-composited at its
             center, encoded as JPEG at a lower quality

The overlay is sized from the source's pixel dimensions, so the header probe
always runs before overlay synthesis, which runs before compositing.
CPU-bound; callers run it in a worker pool.
"""

import io
from dataclasses import dataclass
from typing import Optional, Tuple

from PIL import Image, ImageDraw, ImageFont

from event_gallery.core.exceptions import DecodeError, InvalidInputError
from event_gallery.core.logging import get_logger, with_logging
from event_gallery.pipeline.watermark import (
    PANEL_FILL,
    TEXT_FILL,
    TEXT_STROKE,
    WatermarkOverlay,
    build_watermark_overlay,
)

logger = get_logger(__name__)

# Errors Pillow raises for unreadable, truncated or hostile input
_DECODE_ERRORS = (OSError, SyntaxError, ValueError, Image.DecompressionBombError)


@dataclass(frozen=True)
class Renditions:
    """Encoded outputs for one source file."""
    original: bytes
    watermark: bytes
    width: int
    height: int


def probe_dimensions(raw: bytes, index: int) -> Tuple[int, int]:
    """Read (width, height) from the image header without decoding pixels."""
    try:
        with Image.open(io.BytesIO(raw)) as image:
            return image.size
    except _DECODE_ERRORS as e:
        raise DecodeError(
            f"Image {index + 1} could not be read: {e}",
            stage="probe",
            batch_index=index
        ) from e


def load_font(size: int, font_path: Optional[str] = None) -> ImageFont.ImageFont:
    if font_path:
        try:
            return ImageFont.truetype(font_path, size)
        except OSError:
            logger.warning("watermark_font_unavailable", font_path=font_path)
    return ImageFont.load_default(size=size)


def render_overlay(overlay: WatermarkOverlay, font_path: Optional[str] = None) -> Image.Image:
    """Rasterize the overlay panel to an RGBA layer of the overlay's size."""
    layer = Image.new("RGBA", (overlay.width, overlay.height), (0, 0, 0, 0))
    draw = ImageDraw.Draw(layer)

    draw.rounded_rectangle(
        (0, 0, overlay.width - 1, overlay.height - 1),
        radius=overlay.corner_radius,
        fill=PANEL_FILL
    )

    font = load_font(overlay.font_size, font_path)
    left, top, right, bottom = draw.textbbox(
        (0, 0), overlay.label, font=font, stroke_width=overlay.stroke_width
    )
    x = (overlay.width - (right - left)) / 2 - left
    y = (overlay.height - (bottom - top)) / 2 - top
    draw.text(
        (x, y),
        overlay.label,
        font=font,
        fill=TEXT_FILL,
        stroke_width=overlay.stroke_width,
        stroke_fill=TEXT_STROKE
    )
    return layer


def _flatten(image: Image.Image) -> Image.Image:
    """RGB copy of the image; transparent areas become white."""
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    return image.convert("RGB")


def _encode_jpeg(image: Image.Image, quality: int) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality, optimize=True)
    return buffer.getvalue()


def transcode(
    raw: bytes,
    overlay: WatermarkOverlay,
    index: int,
    original_quality: int = 90,
    watermark_quality: int = 80,
    font_path: Optional[str] = None
) -> Renditions:
    """
    Produce the original and watermark renditions of one source image.

    Raises:
        DecodeError: If the source cannot be decoded
        InvalidInputError: If the overlay does not fit the source
    """
    try:
        with Image.open(io.BytesIO(raw)) as source:
            source.load()
            base = _flatten(source)
    except _DECODE_ERRORS as e:
        raise DecodeError(
            f"Image {index + 1} could not be decoded: {e}",
            batch_index=index
        ) from e

    width, height = base.size
    if overlay.width > width or overlay.height > height:
        raise InvalidInputError(
            f"Overlay {overlay.width}x{overlay.height} does not fit image {width}x{height}",
            stage="transcode",
            batch_index=index
        )

    original_bytes = _encode_jpeg(base, original_quality)

    layer = render_overlay(overlay, font_path)
    canvas = base.convert("RGBA")
    offset = ((width - overlay.width) // 2, (height - overlay.height) // 2)
    canvas.alpha_composite(layer, dest=offset)
    watermark_bytes = _encode_jpeg(canvas.convert("RGB"), watermark_quality)

    return Renditions(
        original=original_bytes,
        watermark=watermark_bytes,
        width=width,
        height=height
    )


@with_logging("transcode")
def render_renditions(
    raw: bytes,
    label: str,
    index: int,
    original_quality: int = 90,
    watermark_quality: int = 80,
    font_path: Optional[str] = None
) -> Renditions:
    """Probe, build the overlay for the probed size, then composite and encode."""
    width, height = probe_dimensions(raw, index)
    try:
        overlay = build_watermark_overlay(width, height, label)
    except InvalidInputError as e:
        e.batch_index = index
        raise
    renditions = transcode(
        raw,
        overlay,
        index,
        original_quality=original_quality,
        watermark_quality=watermark_quality,
        font_path=font_path
    )
    logger.debug(
        "renditions_ready",
        batch_index=index,
        dimensions=(width, height),
        original_size=len(renditions.original),
        watermark_size=len(renditions.watermark)
    )
    return renditions
