# =============================================================================
# Session Screen
# =============================================================================
# The only screen of LDUI. It hosts the FrameView and bridges Textual to the
# session engine:
#
#   Textual key / resize events  ->  Session.post(KeyPressed / Resized)
#   set_interval timer           ->  Session.post(Tick)
#   Session sink (FrameDiff)     ->  FrameView.apply_diff + SixelWriter
#
# The session's event loop runs as a Textual worker on the app's asyncio
# loop, so the queue, the pipeline tasks and the Textual handlers all live
# on one thread.
# =============================================================================

import logging

from textual import events, work
from textual.app import ComposeResult
from textual.screen import Screen

from ldui.config import Config
from ldui.rendering.images import TerminalCapabilities
from ldui.session import KeyPressed, Resized, Session, Shutdown, Tick
from ldui.session.fetch import ForumSource
from ldui.session.render import FrameDiff
from ldui.ui.widgets.frame_view import FrameView, SixelWriter

logger = logging.getLogger(__name__)


class SessionScreen(Screen, inherit_bindings=False):
    """
    Full-screen forum browser.

    All keys go to the session's input mapper, so this screen defines no
    Textual bindings of its own.
    """

    def __init__(
        self,
        config: Config,
        client: ForumSource,
        caps: TerminalCapabilities,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.config = config
        self.client = client
        self.caps = caps
        self.session: Session | None = None
        self._sixel = SixelWriter()

    def compose(self) -> ComposeResult:
        yield FrameView(id="frame")

    def on_mount(self) -> None:
        size = self.app.size
        logger.debug(f"Starting session at {size.width}x{size.height}")
        self.session = Session.from_config(
            self.config,
            self.client,
            self.caps,
            self._present,
            size=(size.width, size.height),
        )
        self.query_one(FrameView).focus()
        self.set_interval(self.config.session.tick_interval, self._tick)
        self._run_session()

    @work(exclusive=True, name="session")
    async def _run_session(self) -> None:
        """Run the session loop; leaving it ends the app."""
        assert self.session is not None
        await self.session.run()
        self.app.exit()

    def on_unmount(self) -> None:
        if self.session is not None and not self.session.finished:
            self.session.post(Shutdown())

    # -------------------------------------------------------------------------
    # Events in
    # -------------------------------------------------------------------------

    def on_key(self, event: events.Key) -> None:
        event.stop()
        event.prevent_default()
        if self.session is not None:
            self.session.post(KeyPressed(event.key, event.character))

    def on_resize(self, event: events.Resize) -> None:
        if self.session is not None:
            self.session.post(Resized(event.size.width, event.size.height))

    def _tick(self) -> None:
        if self.session is not None:
            self.session.post(Tick())

    # -------------------------------------------------------------------------
    # Frames out
    # -------------------------------------------------------------------------

    def _present(self, changes: FrameDiff) -> None:
        view = self.query_one(FrameView)
        view.apply_diff(changes)
        if changes.images:
            # Draw after Textual has flushed the rows underneath
            region = view.region
            self.call_after_refresh(self._sixel.write, changes.images, (region.x, region.y))
