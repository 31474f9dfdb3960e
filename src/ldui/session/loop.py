# =============================================================================
# Event Loop
# =============================================================================
# The session: the single task that owns the navigation state, the content
# cache and the render engine.
#
# Everything that happens reaches the session as a message on one
# asyncio.Queue:
#   - KeyPressed     from the terminal (via the UI)
#   - Resized        from the terminal (via the UI)
#   - Tick           periodic, animates the loading spinner
#   - FetchCompleted / FetchFailed   from fetch pipeline workers
#
# The loop's only suspension point is waiting for the next message. Each
# message is dispatched synchronously; if it changed anything, the session
# reconciles the navigation state with the cache, requests missing content,
# re-pins the active screen's entries and hands a frame diff to the sink.
# =============================================================================

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable

from ldui.cache import ContentCache
from ldui.config import Config
from ldui.rendering.images import ImageRenderer, TerminalCapabilities
from ldui.session.fetch import FetchCompleted, FetchFailed, FetchPipeline, ForumSource
from ldui.session.input import InputMapper
from ldui.session.navigation import (
    NavigationState,
    Snapshot,
    Viewport,
    failed_keys,
    needed_keys,
    reconcile,
    transition,
    wanted_keys,
)
from ldui.session.render import FrameDiff, RenderEngine

logger = logging.getLogger(__name__)


# =============================================================================
# Events
# =============================================================================

@dataclass(frozen=True)
class KeyPressed:
    """A key press. `key` is the Textual key name, `character` what it types."""
    key: str
    character: str | None = None


@dataclass(frozen=True)
class Resized:
    width: int
    height: int


@dataclass(frozen=True)
class Tick:
    pass


@dataclass(frozen=True)
class Shutdown:
    """Ends the loop from outside (terminal closed, app exiting)."""
    pass


Event = KeyPressed | Resized | Tick | Shutdown | FetchCompleted | FetchFailed


# =============================================================================
# Session
# =============================================================================

class Session:
    """
    One interactive browsing session.

    Usage:
        >>> session = Session(client, caps, sink=view.apply_diff)
        >>> session.post(Resized(120, 40))
        >>> await session.run()     # returns after the Quit action

    Attributes:
        state: Current navigation state (replaced, never mutated).
        cache: Content cache, owned by the session.
        pipeline: Fetch pipeline writing into the cache.
        finished: True once Quit was processed.
    """

    def __init__(
        self,
        client: ForumSource,
        caps: TerminalCapabilities,
        sink: Callable[[FrameDiff], None],
        *,
        mapper: InputMapper | None = None,
        viewport: Viewport | None = None,
        budget_bytes: int | None = None,
        site: str = "",
    ) -> None:
        """
        Args:
            client: Forum API client.
            caps: Terminal capabilities, decided once at startup.
            sink: Receives every non-empty frame diff.
            mapper: Key bindings.
            viewport: Initial terminal size.
            budget_bytes: Content cache budget.
            site: Forum URL for the header.
        """
        self.caps = caps
        self.mapper = mapper or InputMapper()
        self.viewport = viewport or Viewport()
        self.queue: asyncio.Queue[Any] = asyncio.Queue()
        self.cache: ContentCache = (
            ContentCache(budget_bytes) if budget_bytes else ContentCache()
        )
        renderer = ImageRenderer.for_terminal(
            caps,
            max_width=self.viewport.max_image_cols,
            max_height=self.viewport.max_image_rows,
        )
        self.pipeline = FetchPipeline(client, self.cache, self.post, renderer)
        self.engine = RenderEngine(caps, self.mapper, site=site)
        self.state = NavigationState.initial()
        self.sink = sink
        self.spinner = 0
        self.finished = False

    @classmethod
    def from_config(
        cls,
        config: Config,
        client: ForumSource,
        caps: TerminalCapabilities,
        sink: Callable[[FrameDiff], None],
        size: tuple[int, int] = (80, 24),
    ) -> "Session":
        viewport = Viewport(
            width=size[0],
            height=size[1],
            max_image_cols=config.rendering.max_image_width,
            max_image_rows=config.rendering.max_image_height,
        )
        return cls(
            client,
            caps,
            sink,
            mapper=InputMapper(config.keys),
            viewport=viewport,
            budget_bytes=config.cache.budget_bytes,
            site=config.forum.url,
        )

    # -------------------------------------------------------------------------
    # Message intake
    # -------------------------------------------------------------------------

    def post(self, event: Event) -> None:
        """Queue an event. Call from the loop's own thread only."""
        self.queue.put_nowait(event)

    # -------------------------------------------------------------------------
    # Main loop
    # -------------------------------------------------------------------------

    async def run(self) -> None:
        """Run until Quit or Shutdown."""
        logger.info("Session started")
        self.start()
        try:
            while not self.finished:
                await self.step()
        finally:
            self.pipeline.close()
            logger.info("Session ended")

    def start(self) -> None:
        """Request the initial content and draw the first frame."""
        self._sync()

    async def step(self) -> bool:
        """Wait for one event and dispatch it. Returns True if it changed state."""
        event = await self.queue.get()
        return self.dispatch(event)

    def dispatch(self, event: Event) -> bool:
        """
        Handle one event on the foreground task.

        Returns:
            True if the event changed state and a render pass ran.
        """
        if isinstance(event, KeyPressed):
            action = self.mapper.map(event.key, event.character)
            if action is None:
                return False
            changed = self._apply(action)

        elif isinstance(event, (FetchCompleted, FetchFailed)):
            changed = self.pipeline.resolve(event)

        elif isinstance(event, Resized):
            self.viewport = Viewport(
                width=event.width,
                height=event.height,
                max_image_cols=self.viewport.max_image_cols,
                max_image_rows=self.viewport.max_image_rows,
            )
            self.engine.invalidate()
            changed = True

        elif isinstance(event, Tick):
            # Only animate while something is loading
            changed = bool(self.pipeline.loading())
            if changed:
                self.spinner += 1

        elif isinstance(event, Shutdown):
            self.finished = True
            return True

        else:
            logger.warning(f"Ignoring unknown event: {event!r}")
            return False

        if changed and not self.finished:
            self._sync()
        return changed

    def _apply(self, action: Any) -> bool:
        snap = self.snapshot()
        before = self.state
        result = transition(self.state, action, snap, self.viewport)

        if result.quit:
            logger.info("Quit requested")
            self.finished = True
            return True

        if result.popped:
            self.pipeline.cancel_for(result.popped)

        for key in result.invalidate:
            self.cache.discard(key)
            self.pipeline.forget(key)

        self.state = result.state

        if result.retry:
            requester = self.state.content_frame.id
            for key in failed_keys(self.state, snap, self.viewport, self.caps):
                logger.info(f"Retrying {key}")
                self.pipeline.retry(key, requester)

        return result.state is not before or bool(result.popped or result.invalidate or result.retry)

    # -------------------------------------------------------------------------
    # Reconcile + render
    # -------------------------------------------------------------------------

    def snapshot(self) -> Snapshot:
        return Snapshot(
            values=self.cache.snapshot(),
            failures=self.pipeline.failures(),
            loading=self.pipeline.loading(),
        )

    def _sync(self) -> None:
        """Reconcile, fetch what is missing, pin, render."""
        snap = self.snapshot()
        self.state = reconcile(self.state, snap, self.viewport)

        requester = self.state.content_frame.id
        missing = needed_keys(self.state, snap, self.viewport, self.caps)
        for key in missing:
            self.pipeline.request(key, requester)

        self.cache.pin(wanted_keys(self.state, snap, self.viewport, self.caps))

        if missing:
            snap = self.snapshot()
        changes = self.engine.frame(self.state, snap, self.viewport, self.spinner)
        if not changes.is_empty:
            self.sink(changes)
