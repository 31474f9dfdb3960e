# =============================================================================
# Render Engine
# =============================================================================
# Maps (navigation state, content snapshot, terminal size) to a FrameBuffer
# and diffs it against the previous one.
#
# Frame layout:
#   row 0          header: app name, site, screen title
#   rows 1..h-2    body: topic rows, post lines, image, or help overlay
#   row h-1        status bar: key hints, loading spinner
#
# A FrameBuffer is plain data: rows of styled spans (style names, not
# colors) plus Sixel image placements at cell offsets. The UI layer turns a
# FrameDiff into terminal writes, repainting only the rows that changed.
#
# Sixel output is gated on the session-wide capability flag: when it is off
# the engine never produces an ImagePlacement, only the "[image]" text.
# =============================================================================

import logging
from dataclasses import dataclass, field
from typing import Any, NamedTuple
from urllib.parse import urlparse

from rich.cells import cell_len

from ldui.core import ImageKey, ImageRef
from ldui.rendering.images import PixelBuffer, SixelImage, TerminalCapabilities
from ldui.rendering.layout import fit_cells, topic_row
from ldui.session.input import InputMapper
from ldui.session.navigation import (
    HEADER_ROWS,
    Action,
    NavigationFrame,
    NavigationState,
    Screen,
    Snapshot,
    Viewport,
    failed_keys,
    frame_layout,
    frame_topics,
    page_key,
    sixel_key,
)

logger = logging.getLogger(__name__)

SPINNER = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"

# Text drawn in place of an image the terminal cannot show
IMAGE_PLACEHOLDER = "[image]"


class Span(NamedTuple):
    """A run of text in one style."""
    text: str
    style: str = "body"


Row = tuple[Span, ...]


@dataclass(frozen=True)
class ImagePlacement:
    """
    A Sixel payload anchored at a cell offset.

    Attributes:
        row: Top row (absolute, header included).
        col: Left column.
        cols: Width in cells.
        rows: Height in cells.
        key: Content key of the payload.
        data: The Sixel escape sequence.
    """
    row: int
    col: int
    cols: int
    rows: int
    key: Any
    data: bytes = field(default=b"", repr=False, compare=False)


@dataclass(frozen=True)
class FrameBuffer:
    """
    One complete screen: every row is exactly `width` cells wide.
    """
    width: int
    height: int
    rows: tuple[Row, ...]
    images: tuple[ImagePlacement, ...] = ()

    def text(self) -> str:
        """Plain text of the whole frame, one line per row."""
        return "\n".join("".join(span.text for span in row) for row in self.rows)


@dataclass(frozen=True)
class FrameDiff:
    """
    What changed between two frame buffers.

    Attributes:
        width: Frame width.
        height: Frame height.
        full: Everything must be redrawn (first frame or size change).
        rows: (row index, new row) for rows that changed.
        images: Placements to (re)draw after the rows are written.
    """
    width: int
    height: int
    full: bool = False
    rows: tuple[tuple[int, Row], ...] = ()
    images: tuple[ImagePlacement, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.full and not self.rows and not self.images


def diff(previous: FrameBuffer | None, current: FrameBuffer) -> FrameDiff:
    """
    Compute the minimal set of row and image writes from previous to current.

    Rows under an image that disappeared are repainted so the old pixels get
    covered; an image whose rows were repainted is drawn again.
    """
    if previous is None or (previous.width, previous.height) != (current.width, current.height):
        return FrameDiff(
            width=current.width,
            height=current.height,
            full=True,
            rows=tuple(enumerate(current.rows)),
            images=current.images,
        )

    changed = {
        index for index, (old, new) in enumerate(zip(previous.rows, current.rows))
        if old != new
    }
    kept = set(current.images)
    for placement in previous.images:
        if placement not in kept:
            changed.update(range(placement.row, min(placement.row + placement.rows, current.height)))

    before = set(previous.images)
    images = tuple(
        placement for placement in current.images
        if placement not in before
        or any(r in changed for r in range(placement.row, placement.row + placement.rows))
    )

    return FrameDiff(
        width=current.width,
        height=current.height,
        rows=tuple((index, current.rows[index]) for index in sorted(changed)),
        images=images,
    )


# =============================================================================
# Render Engine
# =============================================================================

class RenderEngine:
    """
    Renders navigation state into frame buffers.

    render() is pure; frame() additionally remembers the last buffer so it
    can return a diff.

    Usage:
        >>> engine = RenderEngine(caps, mapper, site="https://linux.do")
        >>> changes = engine.frame(state, snapshot, viewport)
        >>> if not changes.is_empty:
        ...     sink(changes)
    """

    def __init__(
        self,
        caps: TerminalCapabilities,
        mapper: InputMapper | None = None,
        site: str = "",
    ) -> None:
        """
        Args:
            caps: Terminal capabilities, fixed for the session.
            mapper: Key bindings, for the status bar and help overlay.
            site: Forum URL shown in the header.
        """
        self.caps = caps
        self.mapper = mapper or InputMapper()
        self.site = urlparse(site).netloc or site
        self.previous: FrameBuffer | None = None

    def frame(
        self,
        state: NavigationState,
        snap: Snapshot,
        viewport: Viewport,
        spinner: int = 0,
    ) -> FrameDiff:
        """Render and diff against the previously rendered frame."""
        current = self.render(state, snap, viewport, spinner)
        changes = diff(self.previous, current)
        self.previous = current
        return changes

    def invalidate(self) -> None:
        """Forget the previous frame so the next diff is a full redraw."""
        self.previous = None

    def render(
        self,
        state: NavigationState,
        snap: Snapshot,
        viewport: Viewport,
        spinner: int = 0,
    ) -> FrameBuffer:
        """Render a complete frame. Pure: same inputs, same buffer."""
        width = max(viewport.width, 1)
        body_height = viewport.body_height
        spin = SPINNER[spinner % len(SPINNER)]
        frame = state.content_frame
        images: tuple[ImagePlacement, ...] = ()

        if frame.screen is Screen.TOPIC_LIST:
            body = self._topic_list(frame, snap, viewport, spin)
        elif frame.screen is Screen.POST_DETAIL:
            body = self._post_detail(frame, snap, viewport, spin)
        else:
            body, images = self._image_viewer(frame, snap, viewport, spin)

        if state.active.screen is Screen.HELP:
            body = self._help_overlay(body, width, body_height)
            images = ()

        rows = [self._header(state, width)]
        rows.extend(body[:body_height])
        while len(rows) < HEADER_ROWS + body_height:
            rows.append(_blank(width))
        rows.append(self._status_bar(state, snap, viewport, spin))
        return FrameBuffer(width=width, height=len(rows), rows=tuple(rows), images=images)

    # -------------------------------------------------------------------------
    # Chrome
    # -------------------------------------------------------------------------

    def _header(self, state: NavigationState, width: int) -> Row:
        frame = state.content_frame
        if frame.screen is Screen.TOPIC_LIST:
            title = "Latest topics"
        else:
            title = frame.title or frame.screen.value
        if state.active.screen is Screen.HELP:
            title += " · Help"

        brand = " LDUI "
        location = f" {self.site} · {title}" if self.site else f" {title}"
        if cell_len(brand) >= width:
            return (Span(fit_cells(brand, width), "header-brand"),)
        return (
            Span(brand, "header-brand"),
            Span(fit_cells(location, width - cell_len(brand)), "header"),
        )

    def _status_bar(
        self, state: NavigationState, snap: Snapshot, viewport: Viewport, spin: str
    ) -> Row:
        width = max(viewport.width, 1)
        hint_actions = [Action.BACK, Action.SELECT, Action.TOGGLE_HELP, Action.QUIT]
        if state.content_frame.screen is Screen.POST_DETAIL:
            hint_actions.insert(2, Action.NEXT_IMAGE)
        names = {
            Action.BACK: "back", Action.SELECT: "open", Action.NEXT_IMAGE: "image",
            Action.TOGGLE_HELP: "help", Action.QUIT: "quit",
        }
        hints = "  ".join(
            f"{self.mapper.label(action)} {names[action]}"
            for action in hint_actions if self.mapper.keys_for(action)
        )

        right = ""
        if snap.loading:
            right = f"{spin} loading {len(snap.loading)} "
        elif failed := failed_keys(state, snap, viewport, self.caps):
            right = f"{len(failed)} failed ({self.mapper.label(Action.RETRY)} retry) "

        right_width = min(cell_len(right), width)
        return (
            Span(fit_cells(" " + hints, width - right_width), "status"),
            Span(fit_cells(right, right_width), "status-info"),
        )

    # -------------------------------------------------------------------------
    # Topic list
    # -------------------------------------------------------------------------

    def _topic_list(
        self,
        frame: NavigationFrame,
        snap: Snapshot,
        viewport: Viewport,
        spin: str,
    ) -> list[Row]:
        topics = frame_topics(frame, snap)
        width = viewport.width
        rows: list[Row] = []

        for index in range(frame.scroll, frame.scroll + viewport.body_height):
            if index < len(topics):
                title, meta = topic_row(topics[index], width)
                selected = index == frame.cursor
                row = [Span(title, "cursor" if selected else "body")]
                if meta:
                    row.append(Span(meta, "cursor-meta" if selected else "meta"))
                rows.append(tuple(row))
            elif index == len(topics):
                rows.append(self._footer(frame, snap, width, spin, empty=not topics))
            else:
                rows.append(_blank(width))
        return rows

    def _footer(
        self,
        frame: NavigationFrame,
        snap: Snapshot,
        width: int,
        spin: str,
        empty: bool,
    ) -> Row:
        """Status line after the last item: loading, error, or end marker."""
        for number in range(1, frame.pages + 1):
            key = page_key(frame, number)
            if snap.get(key) is not None:
                continue
            reason = snap.failure(key)
            if reason is not None:
                retry = self.mapper.label(Action.RETRY)
                return _line(f"  ✗ Failed to load page {number}: {reason} ({retry} to retry)",
                             width, "error")
            return _line(f"  {spin} Loading…", width, "dim")

        if empty:
            text = "No topics." if frame.screen is Screen.TOPIC_LIST else "No posts."
            return _line(f"  {text}", width, "dim")
        if frame.exhausted:
            return _line("  (end)", width, "dim")
        return _line("  …", width, "dim")

    # -------------------------------------------------------------------------
    # Post detail
    # -------------------------------------------------------------------------

    def _post_detail(
        self,
        frame: NavigationFrame,
        snap: Snapshot,
        viewport: Viewport,
        spin: str,
    ) -> list[Row]:
        layout = frame_layout(frame, snap, viewport)
        width = viewport.width
        rows: list[Row] = []

        for index in range(frame.scroll, frame.scroll + viewport.body_height):
            if index < len(layout.lines):
                line = layout.lines[index]
                if line.image is not None:
                    rows.append(self._image_anchor(
                        layout.images[line.image], line.image, len(layout.images),
                        frame.cursor == line.image, snap, width,
                    ))
                else:
                    rows.append(_line(line.text, width, line.style))
            elif index == len(layout.lines):
                rows.append(self._footer(frame, snap, width, spin, empty=not layout.lines))
            else:
                rows.append(_blank(width))
        return rows

    def _image_anchor(
        self,
        image: ImageRef,
        index: int,
        total: int,
        selected: bool,
        snap: Snapshot,
        width: int,
    ) -> Row:
        image = resolve_image(image, snap)
        marker = "▶" if selected else " "
        text = f"  {marker} [image {index + 1}/{total}] {image.label}"
        style = "image-selected" if selected else "image"

        if image.width is not None and image.height is not None:
            text += f"  {image.width}×{image.height}"
        elif image.error is not None:
            text += f"  ✗ {image.error}"
            if not selected:
                style = "error"
        elif snap.is_loading(ImageKey(image.url)):
            text += "  loading…"
        return _line(text, width, style)

    # -------------------------------------------------------------------------
    # Image viewer
    # -------------------------------------------------------------------------

    def _image_viewer(
        self,
        frame: NavigationFrame,
        snap: Snapshot,
        viewport: Viewport,
        spin: str,
    ) -> tuple[list[Row], tuple[ImagePlacement, ...]]:
        width = viewport.width
        height = viewport.body_height
        key = ImageKey(frame.image_url or "")
        pixels = snap.get(key)
        failure = snap.failure(key)
        retry = self.mapper.label(Action.RETRY)

        if failure is not None:
            lines = [(IMAGE_PLACEHOLDER, "image"), (frame.title, "dim"),
                     (f"✗ {failure}", "error"), (f"{retry} to retry", "dim")]
            return _centered(lines, width, height), ()

        if not isinstance(pixels, PixelBuffer):
            return _centered([(f"{spin} Loading image…", "dim")], width, height), ()

        caption = f"{frame.title}  {pixels.width}×{pixels.height}"

        if not self.caps.sixel_supported:
            lines = [(IMAGE_PLACEHOLDER, "image"), (caption, "dim")]
            return _centered(lines, width, height), ()

        skey = sixel_key(frame, viewport)
        sixel = snap.get(skey)
        sixel_failure = snap.failure(skey)
        if sixel_failure is not None:
            lines = [(IMAGE_PLACEHOLDER, "image"), (caption, "dim"), (f"✗ {sixel_failure}", "error")]
            return _centered(lines, width, height), ()
        if not isinstance(sixel, SixelImage):
            return _centered([(f"{spin} Rendering image…", "dim")], width, height), ()

        cols = min(sixel.dimensions.width, skey.cols)
        rows_used = min(sixel.dimensions.height, skey.rows)
        top = max((height - rows_used - 1) // 2, 0)
        left = max((width - cols) // 2, 0)

        rows = [_blank(width) for _ in range(height)]
        if top + rows_used < height:
            rows[top + rows_used] = _line(_center_text(caption, width), width, "dim")
        placement = ImagePlacement(
            row=HEADER_ROWS + top,
            col=left,
            cols=cols,
            rows=rows_used,
            key=skey,
            data=sixel.data,
        )
        return rows, (placement,)

    # -------------------------------------------------------------------------
    # Help overlay
    # -------------------------------------------------------------------------

    def _help_overlay(self, body: list[Row], width: int, height: int) -> list[Row]:
        entries = self.mapper.help_entries()
        key_width = max((cell_len(keys) for keys, _ in entries), default=0)
        lines = [f" {keys:<{key_width}}  {text} " for keys, text in entries]
        inner = min(max((cell_len(line) for line in lines), default=20), max(width - 4, 1))

        box = ["┌" + "─" * inner + "┐"]
        box.append("│" + fit_cells(" Key bindings", inner) + "│")
        box.append("├" + "─" * inner + "┤")
        box.extend("│" + fit_cells(line, inner) + "│" for line in lines)
        box.append("└" + "─" * inner + "┘")

        top = max((height - len(box)) // 2, 0)
        left = max((width - inner - 2) // 2, 0)
        rows = list(body)
        while len(rows) < height:
            rows.append(_blank(width))
        for offset, text in enumerate(box[:height]):
            rows[top + offset] = (
                Span(" " * left, "dim"),
                Span(fit_cells(text, width - left), "help"),
            )
        return rows


# =============================================================================
# Helpers
# =============================================================================

def resolve_image(image: ImageRef, snap: Snapshot) -> ImageRef:
    """Resolve an ImageRef's decode status against the snapshot."""
    key = ImageKey(image.url)
    pixels = snap.get(key)
    if isinstance(pixels, PixelBuffer):
        return image.decoded(pixels.width, pixels.height)
    reason = snap.failure(key)
    if reason is not None:
        return image.failed(reason)
    return image


def _blank(width: int) -> Row:
    return (Span(" " * width, "body"),)


def _line(text: str, width: int, style: str = "body") -> Row:
    return (Span(fit_cells(text, width), style),)


def _center_text(text: str, width: int) -> str:
    pad = max((width - cell_len(text)) // 2, 0)
    return " " * pad + text


def _centered(lines: list[tuple[str, str]], width: int, height: int) -> list[Row]:
    """Body rows with lines centered both ways."""
    rows = [_blank(width) for _ in range(height)]
    top = max((height - len(lines)) // 2, 0)
    for offset, (text, style) in enumerate(lines):
        if top + offset < height:
            rows[top + offset] = _line(_center_text(text, width), width, style)
    return rows
