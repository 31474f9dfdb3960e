# =============================================================================
# Navigation State Machine
# =============================================================================
# The session's screen state as an immutable stack of NavigationFrame values.
#
# Screens:
#   - TopicList     the root, latest topics page by page
#   - PostDetail    posts of one topic, with selectable image anchors
#   - ImageViewer   one image, full screen
#   - Help          overlay listing key bindings (carries no content)
#
# Everything in this module is a pure function of its arguments:
#   transition(state, action, snapshot, viewport) -> Transition
#   reconcile(state, snapshot, viewport)          -> NavigationState
#   wanted_keys(state, snapshot, viewport, caps)  -> content keys on screen
#
# The stack is never empty: the root TopicList frame cannot be popped.
# Content that is not in the snapshot yet is simply absent; the event loop
# asks the fetch pipeline for it and renders a placeholder meanwhile.
# =============================================================================

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping

from ldui.core import (
    ContentKey,
    ImageKey,
    PostPage,
    PostPageKey,
    SixelKey,
    Topic,
    TopicPage,
    TopicPageKey,
)
from ldui.rendering.images import PixelBuffer, TerminalCapabilities
from ldui.rendering.layout import PostLayout, layout_posts

logger = logging.getLogger(__name__)

# Fixed chrome around the body: one header row, one status bar row
HEADER_ROWS = 1
STATUS_ROWS = 1


class Screen(Enum):
    """Screen variant of a navigation frame."""
    TOPIC_LIST = "topic_list"
    POST_DETAIL = "post_detail"
    IMAGE_VIEWER = "image_viewer"
    HELP = "help"


class Action(Enum):
    """
    Semantic user actions.

    Values double as the action names used in the [keys] config table.
    """
    CURSOR_UP = "cursor_up"
    CURSOR_DOWN = "cursor_down"
    PAGE_UP = "page_up"
    PAGE_DOWN = "page_down"
    SELECT = "select"
    BACK = "back"
    NEXT_IMAGE = "next_image"
    PREV_IMAGE = "prev_image"
    TOGGLE_HELP = "toggle_help"
    RETRY = "retry"
    REFRESH = "refresh"
    QUIT = "quit"


@dataclass(frozen=True)
class Viewport:
    """
    Terminal size plus the image size limits from the config.

    Attributes:
        width: Columns.
        height: Rows, including header and status bar.
        max_image_cols: Upper bound on image width in cells.
        max_image_rows: Upper bound on image height in cells.
    """
    width: int = 80
    height: int = 24
    max_image_cols: int = 80
    max_image_rows: int = 24

    @property
    def body_height(self) -> int:
        return max(self.height - HEADER_ROWS - STATUS_ROWS, 1)

    @property
    def image_area(self) -> tuple[int, int]:
        """Cell box available to the image viewer (one row for the caption)."""
        cols = max(min(self.width - 2, self.max_image_cols), 1)
        rows = max(min(self.body_height - 2, self.max_image_rows), 1)
        return cols, rows


@dataclass(frozen=True)
class NavigationFrame:
    """
    One entry of the navigation history.

    Attributes:
        id: Unique per session; fetches are attributed to frame ids.
        screen: Screen variant.
        cursor: Highlighted topic (TopicList) or image (PostDetail, -1 = none).
        scroll: First body line shown.
        pages: Number of content pages this frame shows.
        exhausted: The last page said there is nothing more to load.
        topic_id: Topic shown by a PostDetail frame.
        image_url: Image shown by an ImageViewer frame.
        title: Topic title or image label, for the header line.
    """
    id: int
    screen: Screen
    cursor: int = 0
    scroll: int = 0
    pages: int = 1
    exhausted: bool = False
    topic_id: int | None = None
    image_url: str | None = None
    title: str = ""


@dataclass(frozen=True)
class NavigationState:
    """
    The frame stack (top = active screen) plus the next frame id.

    Frame ids are never reused within a session, so a late message naming a
    popped frame can never be mistaken for a newer frame.
    """
    stack: tuple[NavigationFrame, ...]
    next_id: int = 1

    def __post_init__(self) -> None:
        if not self.stack:
            raise ValueError("Navigation stack cannot be empty")

    @classmethod
    def initial(cls) -> "NavigationState":
        return cls(stack=(NavigationFrame(id=0, screen=Screen.TOPIC_LIST),), next_id=1)

    @property
    def active(self) -> NavigationFrame:
        return self.stack[-1]

    @property
    def content_frame(self) -> NavigationFrame:
        """Topmost frame that shows content (Help is skipped)."""
        for frame in reversed(self.stack):
            if frame.screen is not Screen.HELP:
                return frame
        return self.stack[0]

    @property
    def frame_ids(self) -> frozenset[int]:
        return frozenset(frame.id for frame in self.stack)

    def push(self, screen: Screen, **fields: Any) -> "NavigationState":
        frame = NavigationFrame(id=self.next_id, screen=screen, **fields)
        return NavigationState(stack=self.stack + (frame,), next_id=self.next_id + 1)

    def pop(self) -> "NavigationState":
        if len(self.stack) == 1:
            return self
        return NavigationState(stack=self.stack[:-1], next_id=self.next_id)

    def replace_frame(self, frame: NavigationFrame) -> "NavigationState":
        """Swap in an updated frame with the same id."""
        stack = tuple(frame if f.id == frame.id else f for f in self.stack)
        return NavigationState(stack=stack, next_id=self.next_id)


@dataclass(frozen=True)
class Snapshot:
    """
    Read-only view of content for one transition or render pass.

    Attributes:
        values: Content key -> cached value.
        failures: Content key -> failure reason for keys whose fetch failed.
        loading: Keys with a fetch queued or in flight.
    """
    values: Mapping[Any, Any] = field(default_factory=dict)
    failures: Mapping[Any, str] = field(default_factory=dict)
    loading: frozenset = frozenset()

    def get(self, key: ContentKey) -> Any:
        return self.values.get(key)

    def failure(self, key: ContentKey) -> str | None:
        return self.failures.get(key)

    def is_loading(self, key: ContentKey) -> bool:
        return key in self.loading


@dataclass(frozen=True)
class Transition:
    """
    Result of applying one action.

    Attributes:
        state: The new navigation state.
        popped: Ids of frames removed from the stack (their fetches get cancelled).
        retry: Re-issue the failed fetches of the active frame.
        invalidate: Keys to drop from the cache and fetch again.
        quit: The session should end.
    """
    state: NavigationState
    popped: tuple[int, ...] = ()
    retry: bool = False
    invalidate: tuple[Any, ...] = ()
    quit: bool = False


# =============================================================================
# Content accessors
# =============================================================================

def page_key(frame: NavigationFrame, page: int) -> ContentKey | None:
    """Content key of one page of a paged frame, None for other screens."""
    if frame.screen is Screen.TOPIC_LIST:
        return TopicPageKey(page)
    if frame.screen is Screen.POST_DETAIL and frame.topic_id is not None:
        return PostPageKey(frame.topic_id, page)
    return None


def loaded_pages(frame: NavigationFrame, snap: Snapshot) -> tuple[Any, ...]:
    """Pages 1..frame.pages that are cached, stopping at the first gap."""
    pages = []
    for number in range(1, frame.pages + 1):
        page = snap.get(page_key(frame, number))
        if page is None:
            break
        pages.append(page)
    return tuple(pages)


def frame_topics(frame: NavigationFrame, snap: Snapshot) -> tuple[Topic, ...]:
    """
    Topics of a TopicList frame, pages concatenated.

    The latest list shifts while we page through it, so a topic can show up
    on two pages; only its first occurrence is kept.
    """
    seen: set[int] = set()
    topics: list[Topic] = []
    page: TopicPage
    for page in loaded_pages(frame, snap):
        for topic in page.topics:
            if topic.id not in seen:
                seen.add(topic.id)
                topics.append(topic)
    return tuple(topics)


def frame_layout(frame: NavigationFrame, snap: Snapshot, viewport: Viewport) -> PostLayout:
    """Laid-out posts of a PostDetail frame."""
    pages: tuple[PostPage, ...] = loaded_pages(frame, snap)
    return layout_posts(pages, viewport.width)


def content_length(frame: NavigationFrame, snap: Snapshot, viewport: Viewport) -> int:
    """Body lines of a frame, including the trailing status line."""
    if frame.screen is Screen.TOPIC_LIST:
        return len(frame_topics(frame, snap)) + 1
    if frame.screen is Screen.POST_DETAIL:
        return len(frame_layout(frame, snap, viewport).lines) + 1
    return 0


def max_scroll(frame: NavigationFrame, snap: Snapshot, viewport: Viewport) -> int:
    return max(content_length(frame, snap, viewport) - viewport.body_height, 0)


def can_paginate(frame: NavigationFrame, snap: Snapshot) -> bool:
    """True if the last page is loaded, non-empty and the server has more."""
    if frame.exhausted:
        return False
    key = page_key(frame, frame.pages)
    if key is None:
        return False
    page = snap.get(key)
    return page is not None and page.has_more and not page.is_empty


def _paginate(frame: NavigationFrame, snap: Snapshot) -> NavigationFrame:
    if not can_paginate(frame, snap):
        return frame
    logger.debug(f"Frame {frame.id} paging to {frame.pages + 1}")
    return replace(frame, pages=frame.pages + 1)


def sixel_key(frame: NavigationFrame, viewport: Viewport) -> SixelKey:
    """Key of the Sixel payload an ImageViewer frame shows at this size."""
    cols, rows = viewport.image_area
    return SixelKey(frame.image_url or "", cols, rows)


def wanted_keys(
    state: NavigationState,
    snap: Snapshot,
    viewport: Viewport,
    caps: TerminalCapabilities,
) -> list[ContentKey]:
    """
    Every content key the active screen displays, present or not.

    These are the keys the cache pins and the ones the pipeline is asked
    for when missing.
    """
    frame = state.content_frame
    keys: list[ContentKey] = []

    if frame.screen in (Screen.TOPIC_LIST, Screen.POST_DETAIL):
        keys.extend(page_key(frame, n) for n in range(1, frame.pages + 1))

    if frame.screen is Screen.POST_DETAIL:
        layout = frame_layout(frame, snap, viewport)
        bottom = frame.scroll + viewport.body_height
        for index, line in enumerate(layout.anchors):
            if frame.scroll <= line < bottom:
                keys.append(ImageKey(layout.images[index].url))

    elif frame.screen is Screen.IMAGE_VIEWER and frame.image_url:
        keys.append(ImageKey(frame.image_url))
        if caps.sixel_supported and isinstance(snap.get(ImageKey(frame.image_url)), PixelBuffer):
            keys.append(sixel_key(frame, viewport))

    return keys


def needed_keys(
    state: NavigationState,
    snap: Snapshot,
    viewport: Viewport,
    caps: TerminalCapabilities,
) -> list[ContentKey]:
    """Wanted keys that are neither cached nor failed."""
    return [
        key for key in wanted_keys(state, snap, viewport, caps)
        if key not in snap.values and key not in snap.failures
    ]


def failed_keys(
    state: NavigationState,
    snap: Snapshot,
    viewport: Viewport,
    caps: TerminalCapabilities,
) -> list[ContentKey]:
    """Wanted keys whose last fetch failed."""
    return [key for key in wanted_keys(state, snap, viewport, caps) if key in snap.failures]


# =============================================================================
# Transitions
# =============================================================================

def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


def transition(
    state: NavigationState,
    action: Action,
    snap: Snapshot,
    viewport: Viewport,
) -> Transition:
    """
    Apply one action to the navigation state.

    Never blocks and never fetches: content the new state needs is derived
    afterwards with needed_keys().
    """
    top = state.active

    if action is Action.QUIT:
        return Transition(state, quit=True)

    if action is Action.TOGGLE_HELP:
        if top.screen is Screen.HELP:
            return Transition(state.pop(), popped=(top.id,))
        return Transition(state.push(Screen.HELP, title="Help"))

    if action is Action.BACK:
        if len(state.stack) == 1:
            return Transition(state)
        return Transition(state.pop(), popped=(top.id,))

    # Help is an overlay: everything else is swallowed while it is up
    if top.screen is Screen.HELP:
        return Transition(state)

    if action is Action.RETRY:
        return Transition(state, retry=True)

    if action is Action.REFRESH:
        return _refresh(state, top)

    if top.screen is Screen.TOPIC_LIST:
        return _topic_list(state, top, action, snap, viewport)
    if top.screen is Screen.POST_DETAIL:
        return _post_detail(state, top, action, snap, viewport)
    return Transition(state)


def _topic_list(
    state: NavigationState,
    frame: NavigationFrame,
    action: Action,
    snap: Snapshot,
    viewport: Viewport,
) -> Transition:
    topics = frame_topics(frame, snap)

    if action is Action.SELECT:
        if not 0 <= frame.cursor < len(topics):
            return Transition(state)
        topic = topics[frame.cursor]
        logger.info(f"Opening topic {topic.id}")
        return Transition(state.push(
            Screen.POST_DETAIL, topic_id=topic.id, title=topic.title, cursor=-1,
        ))

    body = viewport.body_height
    step = {
        Action.CURSOR_UP: -1,
        Action.CURSOR_DOWN: 1,
        Action.PAGE_UP: -body,
        Action.PAGE_DOWN: body,
    }.get(action)
    if step is None or not topics:
        return Transition(state)

    cursor = _clamp(frame.cursor + step, 0, len(topics) - 1)
    scroll = frame.scroll
    if cursor < scroll:
        scroll = cursor
    elif cursor >= scroll + body:
        scroll = cursor - body + 1
    scroll = _clamp(scroll, 0, max(len(topics) + 1 - body, 0))

    updated = replace(frame, cursor=cursor, scroll=scroll)
    if cursor == len(topics) - 1:
        updated = _paginate(updated, snap)
    return Transition(state.replace_frame(updated))


def _post_detail(
    state: NavigationState,
    frame: NavigationFrame,
    action: Action,
    snap: Snapshot,
    viewport: Viewport,
) -> Transition:
    layout = frame_layout(frame, snap, viewport)
    body = viewport.body_height
    limit = max(len(layout.lines) + 1 - body, 0)

    if action is Action.SELECT:
        if not 0 <= frame.cursor < len(layout.images):
            return Transition(state)
        image = layout.images[frame.cursor]
        logger.info(f"Opening image {image.url}")
        return Transition(state.push(
            Screen.IMAGE_VIEWER, image_url=image.url, title=image.label,
        ))

    if action in (Action.NEXT_IMAGE, Action.PREV_IMAGE):
        if not layout.images:
            return Transition(state)
        forward = action is Action.NEXT_IMAGE
        if frame.cursor < 0:
            # Nothing highlighted yet: start from what is on screen
            visible = [
                i for i, line in enumerate(layout.anchors)
                if frame.scroll <= line < frame.scroll + body
            ]
            if visible:
                cursor = visible[0] if forward else visible[-1]
            else:
                cursor = 0 if forward else len(layout.images) - 1
        else:
            cursor = frame.cursor + (1 if forward else -1)
        cursor = _clamp(cursor, 0, len(layout.images) - 1)

        line = layout.anchors[cursor]
        scroll = frame.scroll
        if line < scroll:
            scroll = line
        elif line >= scroll + body:
            scroll = line - body + 1
        updated = replace(frame, cursor=cursor, scroll=_clamp(scroll, 0, limit))
        return Transition(state.replace_frame(updated))

    step = {
        Action.CURSOR_UP: -1,
        Action.CURSOR_DOWN: 1,
        Action.PAGE_UP: -body,
        Action.PAGE_DOWN: body,
    }.get(action)
    if step is None:
        return Transition(state)

    updated = replace(frame, scroll=_clamp(frame.scroll + step, 0, limit))
    if step > 0 and updated.scroll >= limit:
        updated = _paginate(updated, snap)
    return Transition(state.replace_frame(updated))


def _refresh(state: NavigationState, frame: NavigationFrame) -> Transition:
    """Drop the active frame's content and start over from its first page."""
    if frame.screen is Screen.IMAGE_VIEWER:
        keys: tuple[Any, ...] = (ImageKey(frame.image_url or ""),)
        return Transition(state, invalidate=keys)

    keys = tuple(page_key(frame, n) for n in range(1, frame.pages + 1))
    cursor = 0 if frame.screen is Screen.TOPIC_LIST else -1
    updated = replace(frame, cursor=cursor, scroll=0, pages=1, exhausted=False)
    logger.info(f"Refreshing frame {frame.id} ({frame.screen.value})")
    return Transition(state.replace_frame(updated), invalidate=keys)


# =============================================================================
# Reconciliation
# =============================================================================

def reconcile(state: NavigationState, snap: Snapshot, viewport: Viewport) -> NavigationState:
    """
    Bring frames in line with the content that has arrived.

    Runs after every fetch completion and resize:
      - a last page that is empty or final marks the frame exhausted
      - cursor and scroll are clamped to the content
      - a frame whose content does not fill the viewport pages forward

    Returns the same object when nothing changed.
    """
    frames = tuple(_reconcile_frame(frame, snap, viewport) for frame in state.stack)
    if all(new is old for new, old in zip(frames, state.stack)):
        return state
    return NavigationState(stack=frames, next_id=state.next_id)


def _reconcile_frame(
    frame: NavigationFrame,
    snap: Snapshot,
    viewport: Viewport,
) -> NavigationFrame:
    if frame.screen not in (Screen.TOPIC_LIST, Screen.POST_DETAIL):
        return frame

    body = viewport.body_height
    last = snap.get(page_key(frame, frame.pages))
    exhausted = frame.exhausted or (
        last is not None and (last.is_empty or not last.has_more)
    )

    if frame.screen is Screen.TOPIC_LIST:
        count = len(frame_topics(frame, snap))
        cursor = _clamp(frame.cursor, 0, max(count - 1, 0))
        length = count + 1
        scroll = frame.scroll
        if cursor >= scroll + body:
            scroll = cursor - body + 1
    else:
        layout = frame_layout(frame, snap, viewport)
        cursor = min(frame.cursor, len(layout.images) - 1)
        length = len(layout.lines) + 1
        scroll = frame.scroll

    scroll = _clamp(scroll, 0, max(length - body, 0))

    updated = frame
    if (cursor, scroll, exhausted) != (frame.cursor, frame.scroll, frame.exhausted):
        updated = replace(frame, cursor=cursor, scroll=scroll, exhausted=exhausted)
    if length <= body:
        updated = _paginate(updated, snap)
    return updated
