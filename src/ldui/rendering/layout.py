# =============================================================================
# Text Layout
# =============================================================================
# Pure helpers that turn topics and posts into terminal lines.
#
# Everything here measures in terminal cells, not characters: forum content
# is frequently CJK, where one character occupies two cells. Widths come from
# rich's cell tables, the same ones Textual uses when it paints the screen.
#
# The navigation state machine and the render engine both lay out post pages
# (one to clamp scrolling, the other to paint), so layout_posts() is memoized
# on its hashable inputs.
# =============================================================================

from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache

from rich.cells import cell_len

from ldui.core import ImageRef, PostPage, Topic

DATE_FORMAT = "%Y-%m-%d %H:%M"


@dataclass(frozen=True)
class Line:
    """
    One laid-out line of content.

    Attributes:
        text: Line text, at most the layout width in cells.
        style: Style name, resolved to colors by the UI.
        image: Index into PostLayout.images when this line is an image anchor.
    """
    text: str
    style: str = "body"
    image: int | None = None


@dataclass(frozen=True)
class PostLayout:
    """
    Laid-out posts of a topic.

    Attributes:
        lines: All content lines, in display order.
        images: Images in document order across all posts.
        anchors: Line index of each image anchor, parallel to images.
    """
    lines: tuple[Line, ...] = ()
    images: tuple[ImageRef, ...] = ()
    anchors: tuple[int, ...] = ()


# =============================================================================
# Cell-width helpers
# =============================================================================

def fit_cells(text: str, width: int) -> str:
    """Truncate text to at most width cells, then pad it to exactly width."""
    if width <= 0:
        return ""
    if cell_len(text) > width:
        out = []
        used = 0
        for char in text:
            w = cell_len(char)
            if used + w > width - 1:
                break
            out.append(char)
            used += w
        text = "".join(out) + "…"
    return text + " " * (width - cell_len(text))


def wrap_cells(text: str, width: int) -> list[str]:
    """
    Wrap one paragraph to width cells.

    Breaks on spaces where the paragraph has them; runs without spaces (CJK
    text, long URLs) are broken at the cell boundary.
    """
    if width <= 0:
        return [text]
    if cell_len(text) <= width:
        return [text]

    lines: list[str] = []
    current = ""
    for word in text.split(" "):
        candidate = f"{current} {word}" if current else word
        if cell_len(candidate) <= width:
            current = candidate
            continue
        if current:
            lines.append(current)
            current = ""
        while cell_len(word) > width:
            head, word = _split_at_cells(word, width)
            lines.append(head)
        current = word
    if current:
        lines.append(current)
    return lines


def _split_at_cells(text: str, width: int) -> tuple[str, str]:
    used = 0
    for i, char in enumerate(text):
        w = cell_len(char)
        if used + w > width:
            return text[:i], text[i:]
        used += w
    return text, ""


def format_date(value: datetime | None) -> str:
    if value is None:
        return ""
    return value.astimezone().strftime(DATE_FORMAT)


def format_count(value: int) -> str:
    """Compact counter: 999, 1.2k, 34k."""
    if value < 1000:
        return str(value)
    if value < 10_000:
        return f"{value / 1000:.1f}k"
    return f"{value // 1000}k"


# =============================================================================
# Topics
# =============================================================================

def topic_row(topic: Topic, width: int) -> tuple[str, str]:
    """
    Lay out one topic as (title part, meta part), together exactly width cells.

    The meta column (replies, views, last activity) is fixed width and
    right-aligned; the title takes what is left, tags appended in brackets.
    """
    meta = (
        f" {format_count(topic.reply_count):>5} replies"
        f" {format_count(topic.views):>5} views"
        f"  {format_date(topic.last_activity):16} "
    )
    title = topic.title
    if topic.tags:
        title += "  [" + ", ".join(topic.tags) + "]"
    title_width = max(width - cell_len(meta), 0)
    if title_width < 10:
        return fit_cells(title, width), ""
    return fit_cells(" " + title, title_width), meta


# =============================================================================
# Posts
# =============================================================================

@lru_cache(maxsize=32)
def layout_posts(pages: tuple[PostPage, ...], width: int) -> PostLayout:
    """
    Lay out posts of consecutive pages for a given width.

    Each post becomes a header line, its wrapped text, one anchor line per
    embedded image and a blank separator.
    """
    width = max(width, 10)
    lines: list[Line] = []
    images: list[ImageRef] = []
    anchors: list[int] = []

    for page in pages:
        for post in page.posts:
            header = f"#{post.post_number} {post.author}"
            stamp = format_date(post.created_at)
            if stamp:
                header += f" · {stamp}"
            rule = max(width - cell_len(header) - 3, 0)
            lines.append(Line(text=f"─ {header} " + "─" * rule, style="post-header"))

            for paragraph in post.text.splitlines():
                if not paragraph.strip():
                    lines.append(Line(text=""))
                    continue
                indent = len(paragraph) - len(paragraph.lstrip(" "))
                for part in wrap_cells(paragraph.lstrip(" "), width - 2 - indent):
                    lines.append(Line(text="  " + " " * indent + part))

            for image in post.images:
                anchors.append(len(lines))
                lines.append(Line(text=image.label, style="image", image=len(images)))
                images.append(image)

            lines.append(Line(text=""))

    return PostLayout(lines=tuple(lines), images=tuple(images), anchors=tuple(anchors))

