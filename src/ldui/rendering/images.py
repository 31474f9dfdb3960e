# =============================================================================
# Terminal Image Rendering
# =============================================================================
# Decodes images into pixel buffers and encodes pixel buffers as Sixel.
#
# The process:
#   1. Decode image bytes (PNG, JPEG, GIF, ... or a Sixel sequence)
#   2. Resize to fit the target cell box (never upscale)
#   3. Quantize to the terminal's palette size
#   4. Emit the Sixel escape sequence
#
# Sixel layout:
#   DCS  P1;P2;P3 q          - introducer (ESC P ... q)
#   "Pan;Pad;Ph;Pv           - raster attributes (aspect, width, height)
#   #n;2;r;g;b               - palette entry n, RGB in percent
#   #n <sixel chars> $       - select colour n, paint a band, carriage return
#   -                        - next band (6 pixel rows down)
#   ST                       - terminator (ESC \)
#
# Everything here is synchronous and thread-safe: the fetch pipeline runs
# decode and encode work in a thread pool.
# =============================================================================

import colorsys
import logging
import os
from dataclasses import dataclass
from io import BytesIO

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

# Escape sequence framing
DCS = b"\x1bP"
ST = b"\x1b\\"
SIXEL_INTRODUCER = DCS + b"0;1;0q"   # P2=1: unset pixels stay transparent

# Sixel characters encode 6 vertical pixels as chr(63 + bits)
SIXEL_OFFSET = 63
SIXEL_BAND = 6

# Sixel terminals commonly expose 256 colour registers
DEFAULT_PALETTE_SIZE = 256


@dataclass(frozen=True)
class PixelBuffer:
    """
    Decoded image pixels.

    Attributes:
        width: Width in pixels.
        height: Height in pixels.
        pixels: Packed RGB bytes, row-major, 3 bytes per pixel.
    """
    width: int
    height: int
    pixels: bytes

    @classmethod
    def from_image(cls, image: Image.Image) -> "PixelBuffer":
        """Build a buffer from a PIL image (converted to RGB)."""
        if image.mode != "RGB":
            image = image.convert("RGB")
        return cls(width=image.width, height=image.height, pixels=image.tobytes())

    def to_image(self) -> Image.Image:
        """Rebuild a PIL image from the buffer."""
        return Image.frombytes("RGB", (self.width, self.height), self.pixels)

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    def estimated_size(self) -> int:
        """Byte estimate used by the content cache."""
        return len(self.pixels) + 64


@dataclass(frozen=True)
class ImageDimensions:
    """
    Dimensions for image display.

    Attributes:
        width: Width in terminal cells.
        height: Height in terminal rows.
        pixel_width: Actual pixel width.
        pixel_height: Actual pixel height.
    """
    width: int          # Terminal cells
    height: int         # Terminal rows
    pixel_width: int    # Actual pixels
    pixel_height: int   # Actual pixels


@dataclass(frozen=True)
class SixelImage:
    """An encoded Sixel payload plus the cell box it occupies."""
    data: bytes
    dimensions: ImageDimensions

    def estimated_size(self) -> int:
        return len(self.data) + 64


@dataclass(frozen=True)
class TerminalCapabilities:
    """
    Graphics capabilities of the terminal, decided once per session.

    Attributes:
        sixel_supported: Whether Sixel sequences may be emitted at all.
        palette_size: Number of colour registers to quantize to.
        cell_width: Pixel width of a terminal cell.
        cell_height: Pixel height of a terminal cell.
    """
    sixel_supported: bool = False
    palette_size: int = DEFAULT_PALETTE_SIZE
    cell_width: int = 8
    cell_height: int = 16


class ImageRenderer:
    """
    Renders images for terminal display.

    Handles decoding, resizing and conversion to Sixel.

    Usage:
        >>> renderer = ImageRenderer(max_width=80, max_height=40)
        >>> pixels = renderer.decode(image_bytes)
        >>> sixel = renderer.render_sixel(pixels, cols=60, rows=20)
    """

    def __init__(
        self,
        max_width: int = 80,
        max_height: int = 40,
        cell_width: int = 8,
        cell_height: int = 16,
        palette_size: int = DEFAULT_PALETTE_SIZE,
    ) -> None:
        """
        Initialize the image renderer.

        Args:
            max_width: Maximum width in terminal cells.
            max_height: Maximum height in terminal rows.
            cell_width: Pixel width of a terminal cell.
            cell_height: Pixel height of a terminal cell.
            palette_size: Colour registers available for Sixel output.
        """
        self.max_width = max_width
        self.max_height = max_height
        self.cell_width = cell_width
        self.cell_height = cell_height
        self.palette_size = max(2, min(palette_size, 256))

    @classmethod
    def for_terminal(cls, caps: TerminalCapabilities, max_width: int = 80,
                     max_height: int = 40) -> "ImageRenderer":
        return cls(
            max_width=max_width,
            max_height=max_height,
            cell_width=caps.cell_width,
            cell_height=caps.cell_height,
            palette_size=caps.palette_size,
        )

    # -------------------------------------------------------------------------
    # Decoding
    # -------------------------------------------------------------------------

    def load_image(self, data: bytes) -> Image.Image:
        """
        Load an image from bytes.

        Args:
            data: Image data (PNG, JPEG, GIF, etc.)

        Returns:
            PIL Image object (first frame for animations).

        Raises:
            DecodeError: If the data is corrupt or the format unsupported.
        """
        try:
            image = Image.open(BytesIO(data))
            image.load()
        except (UnidentifiedImageError, Image.DecompressionBombError) as e:
            raise DecodeError(f"Unsupported image: {e}") from e
        except (OSError, ValueError, SyntaxError) as e:
            raise DecodeError(f"Corrupt image: {e}") from e
        return image

    def decode(self, data: bytes) -> PixelBuffer:
        """
        Decode image bytes into a pixel buffer.

        Sixel sequences are parsed directly; everything else goes through
        Pillow. Transparent areas are flattened onto black.

        Raises:
            DecodeError: If the data cannot be decoded.
        """
        if not data:
            raise DecodeError("Empty image data")
        if is_sixel(data):
            return decode_sixel(data)

        image = self.load_image(data)
        if image.mode in ("RGBA", "LA", "PA") or "transparency" in image.info:
            rgba = image.convert("RGBA")
            background = Image.new("RGBA", rgba.size, (0, 0, 0, 255))
            image = Image.alpha_composite(background, rgba)
        buffer = PixelBuffer.from_image(image)
        if buffer.width == 0 or buffer.height == 0:
            raise DecodeError("Image has no pixels")
        return buffer

    # -------------------------------------------------------------------------
    # Sizing
    # -------------------------------------------------------------------------

    def resize_image(
        self,
        image: Image.Image,
        max_width: int | None = None,
        max_height: int | None = None,
    ) -> tuple[Image.Image, ImageDimensions]:
        """
        Resize image to fit terminal constraints.

        Maintains aspect ratio while fitting within max dimensions. Images
        that already fit are left untouched.

        Args:
            image: PIL Image to resize.
            max_width: Max width in cells (uses self.max_width if None).
            max_height: Max height in rows (uses self.max_height if None).

        Returns:
            Tuple of (resized image, dimensions).
        """
        max_w = (max_width or self.max_width) * self.cell_width
        max_h = (max_height or self.max_height) * self.cell_height

        # Calculate new size maintaining aspect ratio
        width, height = image.size
        ratio = min(max_w / width, max_h / height)

        if ratio < 1:
            new_width = max(1, int(width * ratio))
            new_height = max(1, int(height * ratio))
            image = image.resize((new_width, new_height), Image.Resampling.LANCZOS)
        else:
            new_width, new_height = width, height

        # Calculate terminal dimensions
        cell_width = (new_width + self.cell_width - 1) // self.cell_width
        cell_height = (new_height + self.cell_height - 1) // self.cell_height

        dims = ImageDimensions(
            width=cell_width,
            height=cell_height,
            pixel_width=new_width,
            pixel_height=new_height,
        )

        return image, dims

    # -------------------------------------------------------------------------
    # Sixel Encoding
    # -------------------------------------------------------------------------

    def render_sixel(
        self,
        pixels: PixelBuffer,
        cols: int | None = None,
        rows: int | None = None,
    ) -> SixelImage:
        """
        Render a pixel buffer as Sixel graphics.

        Each sixel character represents a 1x6 pixel column of one colour.
        The image is scaled down to fit cols x rows cells, quantized to the
        palette size, then written band by band with run-length compression.

        Args:
            pixels: Decoded image.
            cols: Target width in cells.
            rows: Target height in cells.

        Returns:
            SixelImage with the escape sequence and its cell dimensions.
        """
        image, dims = self.resize_image(pixels.to_image(), cols, rows)
        quantized = image.quantize(colors=self.palette_size)
        data = _encode_indexed(quantized)
        logger.debug(
            f"Encoded {dims.pixel_width}x{dims.pixel_height} image as sixel "
            f"({len(data)} bytes, {dims.width}x{dims.height} cells)"
        )
        return SixelImage(data=data, dimensions=dims)


# =============================================================================
# Module-level Codec Functions
# =============================================================================

def decode(data: bytes) -> PixelBuffer:
    """Decode image bytes (raster or Sixel) into a pixel buffer."""
    return ImageRenderer().decode(data)


def encode_sixel(
    pixels: PixelBuffer,
    cols: int,
    rows: int,
    caps: TerminalCapabilities | None = None,
) -> bytes:
    """Encode a pixel buffer as a Sixel sequence fitting cols x rows cells."""
    caps = caps or TerminalCapabilities(sixel_supported=True)
    renderer = ImageRenderer.for_terminal(caps, max_width=cols, max_height=rows)
    return renderer.render_sixel(pixels, cols, rows).data


def is_sixel(data: bytes) -> bool:
    """True if the data starts with a Sixel DCS sequence."""
    head = data.lstrip()[:32]
    if head.startswith(DCS):
        body = head[2:]
    elif head.startswith(b"\x90"):
        body = head[1:]
    else:
        return False
    for byte in body:
        if byte == ord("q"):
            return True
        if not (chr(byte).isdigit() or byte == ord(";")):
            return False
    return False


def _encode_indexed(image: Image.Image) -> bytes:
    """Encode a palette-mode ("P") image as a complete Sixel sequence."""
    width, height = image.size
    indices = image.tobytes()
    palette = image.getpalette() or []

    out = [SIXEL_INTRODUCER, f'"1;1;{width};{height}'.encode("ascii")]

    for idx in sorted(set(indices)):
        r, g, b = (palette[idx * 3:idx * 3 + 3] + [0, 0, 0])[:3]
        out.append(
            f"#{idx};2;{r * 100 // 255};{g * 100 // 255};{b * 100 // 255}".encode("ascii")
        )

    for top in range(0, height, SIXEL_BAND):
        band_rows = min(SIXEL_BAND, height - top)
        masks: dict[int, bytearray] = {}
        for dy in range(band_rows):
            start = (top + dy) * width
            row = indices[start:start + width]
            bit = 1 << dy
            for x, idx in enumerate(row):
                mask = masks.get(idx)
                if mask is None:
                    mask = masks[idx] = bytearray(width)
                mask[x] |= bit

        for n, idx in enumerate(sorted(masks)):
            if n:
                out.append(b"$")
            out.append(f"#{idx}".encode("ascii") + _run_length(masks[idx]))
        if top + SIXEL_BAND < height:
            out.append(b"-")

    out.append(ST)
    return b"".join(out)


def _run_length(mask: bytearray) -> bytes:
    """Compress one colour's band into sixel characters with !n repeats."""
    end = len(mask)
    while end and not mask[end - 1]:
        end -= 1

    out = bytearray()
    x = 0
    while x < end:
        value = mask[x]
        run = 1
        while x + run < end and mask[x + run] == value:
            run += 1
        char = SIXEL_OFFSET + value
        if run > 3:
            out += f"!{run}".encode("ascii")
            out.append(char)
        else:
            out += bytes([char]) * run
        x += run
    return bytes(out)


# =============================================================================
# Sixel Decoding
# =============================================================================

def decode_sixel(data: bytes) -> PixelBuffer:
    """
    Parse a Sixel sequence back into pixels.

    Raster attributes, when present, define the image size; otherwise the
    size is the extent of the painted pixels. Unpainted pixels are black.

    Raises:
        DecodeError: If the data is not a well-formed Sixel sequence.
    """
    try:
        text = data.decode("latin-1")
    except UnicodeDecodeError as e:  # pragma: no cover - latin-1 never fails
        raise DecodeError(f"Invalid sixel data: {e}") from e

    text = text.lstrip()
    if text.startswith("\x1bP"):
        text = text[2:]
    elif text.startswith("\x90"):
        text = text[1:]
    else:
        raise DecodeError("Missing sixel DCS introducer")

    q = text.find("q")
    if q < 0:
        raise DecodeError("Missing sixel 'q' final byte")
    body = text[q + 1:]
    for terminator in ("\x1b\\", "\x9c"):
        end = body.find(terminator)
        if end >= 0:
            body = body[:end]
            break
    else:
        raise DecodeError("Unterminated sixel sequence")

    palette: dict[int, tuple[int, int, int]] = {}
    painted: dict[tuple[int, int], tuple[int, int, int]] = {}
    raster: tuple[int, int] | None = None
    color = (0, 0, 0)
    x = y = 0
    max_x = max_y = -1
    i = 0
    n = len(body)

    def read_params(pos: int) -> tuple[list[int], int]:
        params: list[int] = []
        current = ""
        while pos < n and (body[pos].isdigit() or body[pos] == ";"):
            if body[pos] == ";":
                params.append(int(current or 0))
                current = ""
            else:
                current += body[pos]
            pos += 1
        params.append(int(current or 0))
        return params, pos

    while i < n:
        ch = body[i]
        if ch == '"':
            params, i = read_params(i + 1)
            if len(params) >= 4 and params[2] > 0 and params[3] > 0:
                raster = (params[2], params[3])
            continue
        if ch == "#":
            params, i = read_params(i + 1)
            index = params[0]
            if len(params) >= 5:
                palette[index] = _palette_color(params[1], params[2:5])
            color = palette.get(index, (0, 0, 0))
            continue
        if ch == "!":
            params, i = read_params(i + 1)
            if i >= n:
                break
            repeat = max(params[0], 1)
            bits = ord(body[i]) - SIXEL_OFFSET
            i += 1
            if 0 <= bits < 64:
                for _ in range(repeat):
                    max_x, max_y = _paint(painted, x, y, bits, color, max_x, max_y)
                    x += 1
            continue
        if ch == "$":
            x = 0
        elif ch == "-":
            x = 0
            y += SIXEL_BAND
        elif "?" <= ch <= "~":
            bits = ord(ch) - SIXEL_OFFSET
            max_x, max_y = _paint(painted, x, y, bits, color, max_x, max_y)
            x += 1
        i += 1

    if raster:
        width, height = raster
    else:
        width, height = max_x + 1, max_y + 1
    if width <= 0 or height <= 0:
        raise DecodeError("Sixel sequence contains no pixels")

    pixels = bytearray(width * height * 3)
    for (px, py), rgb in painted.items():
        if px < width and py < height:
            offset = (py * width + px) * 3
            pixels[offset:offset + 3] = bytes(rgb)
    return PixelBuffer(width=width, height=height, pixels=bytes(pixels))


def _paint(painted, x, y, bits, color, max_x, max_y):
    for bit in range(SIXEL_BAND):
        if bits & (1 << bit):
            painted[(x, y + bit)] = color
            max_x = max(max_x, x)
            max_y = max(max_y, y + bit)
    return max_x, max_y


def _palette_color(space: int, values: list[int]) -> tuple[int, int, int]:
    """Convert a sixel colour definition (HLS=1 or RGB=2, percents) to RGB."""
    if space == 1:
        h, l, s = values
        r, g, b = colorsys.hls_to_rgb(((h + 240) % 360) / 360, l / 100, s / 100)
        return round(r * 255), round(g * 255), round(b * 255)
    r, g, b = (min(max(v, 0), 100) for v in values)
    return round(r * 255 / 100), round(g * 255 / 100), round(b * 255 / 100)


# =============================================================================
# Capability Detection
# =============================================================================

# Terminals known to speak Sixel, matched against $TERM / $TERM_PROGRAM
_SIXEL_TERMS = ("mlterm", "foot", "contour", "yaft", "sixel", "st-256color-sixel")
_SIXEL_PROGRAMS = ("wezterm", "mintty", "iterm.app", "konsole", "blackbox", "rio")


def detect_terminal_capabilities(
    image_protocol: str = "auto",
    palette_size: int = DEFAULT_PALETTE_SIZE,
    cell_size: tuple[int, int] = (8, 16),
) -> TerminalCapabilities:
    """
    Decide terminal graphics capabilities once, at session start.

    Args:
        image_protocol: "sixel" forces Sixel on, "none" forces it off,
                        "auto" guesses from the environment.
        palette_size: Colour registers to quantize to.
        cell_size: (width, height) of a terminal cell in pixels.

    Detection is environment based only: $TERM, $TERM_PROGRAM and a few
    terminal-specific variables. We never query the terminal.
    """
    if image_protocol == "sixel":
        sixel = True
    elif image_protocol == "none":
        sixel = False
    else:
        term = os.environ.get("TERM", "").lower()
        program = os.environ.get("TERM_PROGRAM", "").lower()
        sixel = (
            any(name in term for name in _SIXEL_TERMS)
            or program in _SIXEL_PROGRAMS
            or bool(os.environ.get("WEZTERM_PANE"))
            or bool(os.environ.get("KONSOLE_VERSION"))
        )

    caps = TerminalCapabilities(
        sixel_supported=sixel,
        palette_size=palette_size,
        cell_width=cell_size[0],
        cell_height=cell_size[1],
    )
    logger.info(f"Terminal capabilities: {caps}")
    return caps


# =============================================================================
# Exceptions
# =============================================================================

class DecodeError(Exception):
    """Raised when image data is malformed or in an unsupported format."""
    pass
