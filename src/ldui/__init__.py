# =============================================================================
# LDUI: A Discourse Forum Client for the Terminal
# =============================================================================
#
# LDUI browses a Discourse forum (linux.do by default) from the terminal:
# the latest topics, each topic's posts as plain wrapped text, and post
# images drawn inline with Sixel graphics where the terminal supports them.
#
# Features:
#   - Keyboard-only navigation with configurable bindings
#   - Background fetching with a byte-budgeted content cache
#   - Sixel image viewer with a text fallback
#   - User API Key generation (ldui -g), stored in the system keyring
#   - XDG Base Directory compliant
#
# =============================================================================

__version__ = "0.1.0"
__app_name__ = "ldui"

__all__ = ["__version__", "__app_name__"]
