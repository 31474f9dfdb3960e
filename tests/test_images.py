# =============================================================================
# Image Codec Tests
# =============================================================================

import pytest
from PIL import Image

from conftest import png_bytes
from ldui.rendering.images import (
    DecodeError,
    ImageRenderer,
    PixelBuffer,
    TerminalCapabilities,
    decode,
    decode_sixel,
    detect_terminal_capabilities,
    encode_sixel,
    is_sixel,
)


def test_decode_png():
    pixels = decode(png_bytes(20, 10, (10, 20, 30)))

    assert pixels.size == (20, 10)
    assert len(pixels.pixels) == 20 * 10 * 3
    assert pixels.pixels[:3] == bytes((10, 20, 30))


@pytest.mark.parametrize("data", [b"", b"garbage bytes", b"\x1bPq no terminator"])
def test_decode_rejects_bad_data(data):
    with pytest.raises(DecodeError):
        decode(data)


def test_transparency_is_flattened_onto_black():
    from io import BytesIO

    buffer = BytesIO()
    Image.new("RGBA", (4, 4), (255, 255, 255, 0)).save(buffer, format="PNG")

    pixels = decode(buffer.getvalue())

    assert pixels.pixels[:3] == b"\x00\x00\x00"


def test_sixel_framing():
    pixels = PixelBuffer(width=8, height=12, pixels=b"\x00\xff\x00" * 96)

    data = encode_sixel(pixels, cols=4, rows=4)

    assert data.startswith(b"\x1bP")
    assert data.endswith(b"\x1b\\")
    assert b"q" in data[:10]
    assert b'"1;1;8;12' in data
    assert is_sixel(data)


def test_sixel_round_trip_keeps_dimensions():
    pixels = decode(png_bytes(16, 13, (255, 0, 0)))

    back = decode(encode_sixel(pixels, cols=10, rows=10))

    assert back.size == (16, 13)
    r, g, b = back.pixels[:3]
    assert r > 200 and g < 30 and b < 30


def test_decode_sixel_without_raster_attributes():
    # one red column, six pixels tall: "~" sets all six bits
    data = b"\x1bPq#1;2;100;0;0#1~~\x1b\\"

    pixels = decode_sixel(data)

    assert pixels.size == (2, 6)


def test_render_sixel_scales_down_to_cell_box():
    renderer = ImageRenderer(cell_width=8, cell_height=16)
    pixels = PixelBuffer(width=400, height=200, pixels=b"\x80" * 400 * 200 * 3)

    sixel = renderer.render_sixel(pixels, cols=10, rows=10)

    assert sixel.dimensions.pixel_width <= 80
    assert sixel.dimensions.width <= 10
    assert sixel.dimensions.height <= 10


def test_render_sixel_never_upscales():
    renderer = ImageRenderer(cell_width=8, cell_height=16)
    pixels = PixelBuffer(width=8, height=16, pixels=b"\x80" * 8 * 16 * 3)

    sixel = renderer.render_sixel(pixels, cols=40, rows=20)

    assert (sixel.dimensions.pixel_width, sixel.dimensions.pixel_height) == (8, 16)
    assert (sixel.dimensions.width, sixel.dimensions.height) == (1, 1)


def test_is_sixel():
    assert is_sixel(b"\x1bP0;1;0q#0")
    assert not is_sixel(b"\x89PNG")
    assert not is_sixel(b"\x1bP$qm\x1b\\")


def test_detect_capabilities_overrides(monkeypatch):
    monkeypatch.setenv("TERM", "xterm-256color")
    monkeypatch.delenv("TERM_PROGRAM", raising=False)
    monkeypatch.delenv("WEZTERM_PANE", raising=False)
    monkeypatch.delenv("KONSOLE_VERSION", raising=False)

    assert detect_terminal_capabilities("sixel").sixel_supported
    assert not detect_terminal_capabilities("none").sixel_supported
    assert not detect_terminal_capabilities("auto").sixel_supported


def test_detect_capabilities_from_environment(monkeypatch):
    monkeypatch.setenv("TERM", "foot")
    caps = detect_terminal_capabilities("auto", palette_size=64, cell_size=(10, 20))
    assert caps == TerminalCapabilities(
        sixel_supported=True, palette_size=64, cell_width=10, cell_height=20,
    )
