# =============================================================================
# UI Screens
# =============================================================================
# SessionScreen hosts the frame view and runs the session loop as a worker.
# The topic list, post detail, image viewer and help overlay are session
# screens drawn into the frame, not Textual screens.
# =============================================================================

from ldui.ui.screens.session import SessionScreen

__all__ = ["SessionScreen"]
