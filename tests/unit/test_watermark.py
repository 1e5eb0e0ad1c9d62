import pytest

from event_gallery.core.exceptions import InvalidInputError
from event_gallery.pipeline.watermark import build_watermark_label, build_watermark_overlay


def test_label_format():
    assert build_watermark_label("Brand", 2025) == "© Brand 2025"


def test_overlay_for_1200x800():
    overlay = build_watermark_overlay(1200, 800, "© Brand 2025")

    assert overlay.width == 1200
    assert overlay.height == 120
    assert overlay.font_size == 48
    assert overlay.corner_radius == 12
    assert overlay.label == "© Brand 2025"

    svg = overlay.svg.decode("utf-8")
    assert 'width="1200"' in svg
    assert 'height="120"' in svg
    assert 'font-size="48"' in svg
    assert "© Brand 2025" in svg


@pytest.mark.parametrize("height,panel", [(100, 15), (1000, 150), (2160, 324)])
def test_panel_height_scales_with_image(height, panel):
    overlay = build_watermark_overlay(640, height, "x")
    assert overlay.height == panel
    assert overlay.width == 640


def test_tiny_image_still_gets_a_panel():
    overlay = build_watermark_overlay(1, 1, "x")
    assert overlay.height >= 1
    assert overlay.font_size >= 1


@pytest.mark.parametrize("width,height", [(0, 800), (1200, 0), (-5, 10), (10, -1), (True, 10), (10.5, 10)])
def test_rejects_invalid_dimensions(width, height):
    with pytest.raises(InvalidInputError) as exc_info:
        build_watermark_overlay(width, height, "© Brand 2025")
    assert exc_info.value.stage == "watermark"
    assert exc_info.value.code == 400


def test_overlay_is_deterministic():
    first = build_watermark_overlay(800, 600, "© Brand 2025")
    second = build_watermark_overlay(800, 600, "© Brand 2025")
    assert first == second


def test_label_is_escaped_in_svg():
    overlay = build_watermark_overlay(400, 300, "<Tom & Jerry>")
    svg = overlay.svg.decode("utf-8")
    assert "&lt;Tom &amp; Jerry&gt;" in svg
    assert "<Tom" not in svg
