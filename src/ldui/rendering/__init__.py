# =============================================================================
# Rendering Module
# =============================================================================
# Turning forum content into something a terminal can show.
#
#   - text:   cooked post HTML -> plain wrapped text (inscriptis), plus the
#             post's image references (BeautifulSoup)
#   - images: image bytes -> pixels -> resized -> Sixel (Pillow)
#   - layout: cell-width aware fitting/wrapping and post layout (rich.cells)
#
# Nothing here touches the terminal directly; the session's render engine
# composes these pieces into frame buffers.
# =============================================================================

from ldui.rendering.images import (
    DecodeError,
    ImageDimensions,
    ImageRenderer,
    PixelBuffer,
    SixelImage,
    TerminalCapabilities,
    detect_terminal_capabilities,
)
from ldui.rendering.layout import Line, PostLayout, fit_cells, layout_posts, wrap_cells
from ldui.rendering.text import TextRenderer, TextRenderOptions

__all__ = [
    "DecodeError",
    "ImageDimensions",
    "ImageRenderer",
    "Line",
    "PixelBuffer",
    "PostLayout",
    "SixelImage",
    "TerminalCapabilities",
    "TextRenderOptions",
    "TextRenderer",
    "detect_terminal_capabilities",
    "fit_cells",
    "layout_posts",
    "wrap_cells",
]
