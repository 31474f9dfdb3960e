# =============================================================================
# Frame View Widget
# =============================================================================
# Paints the session's frame buffer.
#
# The session hands over FrameDiffs; this widget keeps one Strip per row,
# replaces the strips of changed rows and refreshes only those regions, so
# Textual repaints just the lines that changed.
#
# Sixel payloads cannot go through Textual's compositor. They are written
# straight to the terminal after Textual has flushed the refreshed rows
# (see SixelWriter), at the cell offset the render engine computed.
# =============================================================================

import logging
import sys
from typing import IO, Iterable

from rich.segment import Segment
from rich.style import Style
from textual.geometry import Region
from textual.strip import Strip
from textual.widget import Widget

from ldui.session.render import FrameDiff, ImagePlacement, Row

logger = logging.getLogger(__name__)

# Style names used by the render engine -> Rich styles
STYLES: dict[str, Style] = {
    "body": Style(),
    "dim": Style(dim=True),
    "meta": Style(color="grey58"),
    "header": Style(color="white", bgcolor="grey23"),
    "header-brand": Style(color="black", bgcolor="yellow", bold=True),
    "status": Style(color="black", bgcolor="grey70"),
    "status-info": Style(color="black", bgcolor="grey70", bold=True),
    "cursor": Style(color="black", bgcolor="cyan", bold=True),
    "cursor-meta": Style(color="black", bgcolor="cyan"),
    "post-header": Style(color="cyan", bold=True),
    "image": Style(color="magenta"),
    "image-selected": Style(color="black", bgcolor="magenta", bold=True),
    "error": Style(color="red"),
    "help": Style(color="white", bgcolor="grey15"),
}


class FrameView(Widget, can_focus=True):
    """
    A full-screen widget showing the rendered session frame.

    Usage:
        >>> view = FrameView(id="frame")
        >>> view.apply_diff(changes)
    """

    DEFAULT_CSS = """
    FrameView {
        width: 1fr;
        height: 1fr;
    }
    """

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._rows: list[Strip] = []
        self._frame_width = 0

    def apply_diff(self, changes: FrameDiff) -> None:
        """Replace changed rows and schedule a repaint of just those lines."""
        if changes.full or len(self._rows) != changes.height:
            self._rows = [Strip.blank(changes.width) for _ in range(changes.height)]
            self._frame_width = changes.width

        for index, row in changes.rows:
            if 0 <= index < len(self._rows):
                self._rows[index] = self._strip(row)

        if changes.full:
            self.refresh()
        else:
            for index, _ in changes.rows:
                self.refresh(Region(0, index, self._frame_width, 1))

    @staticmethod
    def _strip(row: Row) -> Strip:
        return Strip([Segment(span.text, STYLES.get(span.style)) for span in row])

    def render_line(self, y: int) -> Strip:
        if 0 <= y < len(self._rows):
            return self._rows[y]
        return Strip.blank(self.size.width)


class SixelWriter:
    """
    Writes Sixel placements directly to the terminal.

    The cursor is saved, moved to each placement's cell, the payload
    written, and the cursor restored, so Textual's own output is undisturbed.
    """

    def __init__(self, stream: IO[str] | None = None) -> None:
        self.stream = stream or sys.__stdout__

    def write(self, placements: Iterable[ImagePlacement], origin: tuple[int, int] = (0, 0)) -> None:
        """
        Args:
            placements: Images to draw.
            origin: (x, y) screen offset of the frame view.
        """
        x0, y0 = origin
        out = bytearray(b"\x1b7")
        for placement in placements:
            out += f"\x1b[{y0 + placement.row + 1};{x0 + placement.col + 1}H".encode("ascii")
            out += placement.data
        out += b"\x1b8"

        try:
            self.stream.flush()
            self.stream.buffer.write(bytes(out))
            self.stream.flush()
        except (OSError, ValueError) as e:
            # A broken terminal stream is not worth losing the session over
            logger.warning(f"Could not write sixel data: {e}")
