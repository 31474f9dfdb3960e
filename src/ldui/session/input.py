# =============================================================================
# Input Mapper
# =============================================================================
# Static key -> action lookup, built once at session start from the [keys]
# config table. Keys use Textual's key names ("j", "down", "shift+tab",
# "question_mark"); a key can also be bound by the character it types ("?"),
# which helps with keys whose names differ between terminals.
#
# Unmapped keys map to None and are ignored by the event loop.
# =============================================================================

import logging
from typing import Iterable, Mapping

from ldui.config import DEFAULT_KEY_BINDINGS
from ldui.session.navigation import Action

logger = logging.getLogger(__name__)

# Short descriptions for the help overlay, in display order
ACTION_HELP: dict[Action, str] = {
    Action.CURSOR_DOWN: "Move down / scroll down",
    Action.CURSOR_UP: "Move up / scroll up",
    Action.PAGE_DOWN: "Page down",
    Action.PAGE_UP: "Page up",
    Action.SELECT: "Open topic / image",
    Action.BACK: "Go back",
    Action.NEXT_IMAGE: "Next image in topic",
    Action.PREV_IMAGE: "Previous image in topic",
    Action.RETRY: "Retry failed loads",
    Action.REFRESH: "Reload current screen",
    Action.TOGGLE_HELP: "Toggle this help",
    Action.QUIT: "Quit",
}

# Display names for Textual key names
_KEY_LABELS = {
    "question_mark": "?",
    "space": "Space",
    "enter": "Enter",
    "escape": "Esc",
    "pageup": "PgUp",
    "pagedown": "PgDn",
    "shift+tab": "S-Tab",
    "tab": "Tab",
    "up": "↑",
    "down": "↓",
    "left": "←",
    "right": "→",
}


class InputMapper:
    """
    Translates raw key names into semantic actions.

    Usage:
        >>> mapper = InputMapper({"quit": ["q", "ctrl+c"]})
        >>> mapper.map("q")
        <Action.QUIT: 'quit'>
        >>> mapper.map("x") is None
        True
    """

    def __init__(self, bindings: Mapping[str, Iterable[str]] | None = None) -> None:
        """
        Args:
            bindings: Action name -> key names. None uses the defaults.
                      Unknown action names are skipped with a warning.
        """
        if bindings is None:
            bindings = DEFAULT_KEY_BINDINGS

        self._table: dict[str, Action] = {}
        self._keys: dict[Action, list[str]] = {}

        for name, keys in bindings.items():
            try:
                action = Action(name)
            except ValueError:
                logger.warning(f"Ignoring binding for unknown action: {name}")
                continue
            for key in keys:
                previous = self._table.get(key)
                if previous is not None and previous is not action:
                    logger.warning(f"Key {key!r} rebound from {previous.value} to {action.value}")
                self._table[key] = action
                self._keys.setdefault(action, []).append(key)

    def map(self, key: str, character: str | None = None) -> Action | None:
        """
        Look up the action for a key press.

        Args:
            key: Textual key name.
            character: The printable character, if any.
        """
        action = self._table.get(key)
        if action is None and character:
            action = self._table.get(character)
        return action

    def keys_for(self, action: Action) -> list[str]:
        return list(self._keys.get(action, []))

    def label(self, action: Action) -> str:
        """Human-readable keys of an action, e.g. "j/↓"."""
        return "/".join(_KEY_LABELS.get(key, key) for key in self.keys_for(action))

    def help_entries(self) -> list[tuple[str, str]]:
        """(keys, description) pairs for the help overlay."""
        return [
            (self.label(action), text)
            for action, text in ACTION_HELP.items()
            if self._keys.get(action)
        ]
