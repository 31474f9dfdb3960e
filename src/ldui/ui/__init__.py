# =============================================================================
# UI Module
# =============================================================================
# Textual-based user interface for LDUI.
#
# Structure:
#   - screens/: SessionScreen, the single full-screen view
#   - widgets/: FrameView (painted frame buffer) and SixelWriter
#
# The UI holds no browsing state. It forwards terminal events to the
# session engine and paints the frame diffs the engine produces.
# =============================================================================

from ldui.ui.screens.session import SessionScreen
from ldui.ui.widgets.frame_view import FrameView, SixelWriter

__all__ = ["SessionScreen", "FrameView", "SixelWriter"]
