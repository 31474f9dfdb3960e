# =============================================================================
# UI Widgets
# =============================================================================
#   - FrameView:   paints the session frame buffer row by row
#   - SixelWriter: writes Sixel images straight to the terminal
# =============================================================================

from ldui.ui.widgets.frame_view import FrameView, SixelWriter

__all__ = ["FrameView", "SixelWriter"]
