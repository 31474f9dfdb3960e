# =============================================================================
# Session Module
# =============================================================================
# The interactive session engine:
#   - navigation: immutable frame stack and pure transitions
#   - fetch:      deduplicating async fetch pipeline feeding the cache
#   - input:      key -> action mapping
#   - render:     frame buffers and frame diffs
#   - loop:       the single event loop tying it all together
#
# Nothing here knows about Textual; the UI layer feeds events in and applies
# frame diffs coming out.
# =============================================================================

from ldui.session.fetch import (
    CANCELLED,
    FetchCompleted,
    FetchFailed,
    FetchPipeline,
    FetchRequest,
    FetchStatus,
)
from ldui.session.input import InputMapper
from ldui.session.loop import KeyPressed, Resized, Session, Shutdown, Tick
from ldui.session.navigation import (
    Action,
    NavigationFrame,
    NavigationState,
    Screen,
    Snapshot,
    Transition,
    Viewport,
    reconcile,
    transition,
)
from ldui.session.render import FrameBuffer, FrameDiff, ImagePlacement, RenderEngine, Span

__all__ = [
    "Action",
    "CANCELLED",
    "FetchCompleted",
    "FetchFailed",
    "FetchPipeline",
    "FetchRequest",
    "FetchStatus",
    "FrameBuffer",
    "FrameDiff",
    "ImagePlacement",
    "InputMapper",
    "KeyPressed",
    "NavigationFrame",
    "NavigationState",
    "RenderEngine",
    "Resized",
    "Screen",
    "Session",
    "Shutdown",
    "Snapshot",
    "Span",
    "Tick",
    "Transition",
    "Viewport",
    "reconcile",
    "transition",
]
