# =============================================================================
# Configuration Management
# =============================================================================
# Handles loading, saving, and validating LDUI configuration.
#
# XDG Base Directory Compliance (https://specifications.freedesktop.org/basedir-spec/):
#   - Config:  $XDG_CONFIG_HOME/ldui/  (default: ~/.config/ldui/)
#   - Cache:   $XDG_CACHE_HOME/ldui/   (default: ~/.cache/ldui/)
#   - State:   $XDG_STATE_HOME/ldui/   (default: ~/.local/state/ldui/)
#
# Files:
#   - config.toml: User configuration (forum site, rendering, key bindings)
#   - ldui.log: Application log (in state directory)
#
# The user API key is NOT stored here. It lives in the system keyring under
# the service name "ldui:<site url>".
# =============================================================================

import os
import tomllib  # Built into Python 3.11+
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import keyring
import tomli_w  # For writing TOML (tomllib is read-only)
from keyring.errors import KeyringError


# =============================================================================
# XDG Directory Management
# =============================================================================

# Application identifier used in all XDG paths
APP_NAME = "ldui"


def get_xdg_config_home() -> Path:
    """
    Returns the XDG config directory for LDUI.

    Respects $XDG_CONFIG_HOME if set, otherwise uses ~/.config/ldui/
    This is where user configuration files live (config.toml).
    """
    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        base = Path(xdg_config)
    else:
        base = Path.home() / ".config"
    return base / APP_NAME


def get_xdg_cache_home() -> Path:
    """
    Returns the XDG cache directory for LDUI.

    Respects $XDG_CACHE_HOME if set, otherwise uses ~/.cache/ldui/
    """
    xdg_cache = os.environ.get("XDG_CACHE_HOME")
    if xdg_cache:
        base = Path(xdg_cache)
    else:
        base = Path.home() / ".cache"
    return base / APP_NAME


def get_xdg_state_home() -> Path:
    """
    Returns the XDG state directory for LDUI.

    Respects $XDG_STATE_HOME if set, otherwise uses ~/.local/state/ldui/
    The log file goes here.
    """
    xdg_state = os.environ.get("XDG_STATE_HOME")
    if xdg_state:
        base = Path(xdg_state)
    else:
        base = Path.home() / ".local" / "state"
    return base / APP_NAME


def ensure_directories() -> dict[str, Path]:
    """
    Creates all required XDG directories if they don't exist.

    Returns:
        Dictionary mapping directory type to path.
    """
    dirs = {
        "config": get_xdg_config_home(),
        "cache": get_xdg_cache_home(),
        "state": get_xdg_state_home(),
    }

    for dir_path in dirs.values():
        dir_path.mkdir(parents=True, exist_ok=True)

    return dirs


# =============================================================================
# Configuration Data Structures
# =============================================================================

DEFAULT_SITE_URL = "https://linux.do"

# Default cache budget: 64 MiB of estimated resident size
DEFAULT_CACHE_BUDGET = 64 * 1024 * 1024

# Action name -> key names (Textual key names)
DEFAULT_KEY_BINDINGS: dict[str, list[str]] = {
    "cursor_down": ["j", "down"],
    "cursor_up": ["k", "up"],
    "select": ["l", "right", "enter"],
    "back": ["h", "left", "escape"],
    "page_up": ["pageup"],
    "page_down": ["pagedown", "space"],
    "next_image": ["tab", "i"],
    "prev_image": ["shift+tab"],
    "retry": ["r"],
    "refresh": ["R"],
    "toggle_help": ["question_mark"],
    "quit": ["q"],
}


@dataclass
class ForumConfig:
    """
    Which forum to talk to.

    Attributes:
        url: Site URL without trailing slash.
        username: Account name the API key is stored under in the keyring.
        timeout: HTTP timeout in seconds.
        max_image_bytes: Images larger than this are not downloaded.
    """
    url: str = DEFAULT_SITE_URL
    username: str = "ldui"
    timeout: float = 30.0
    max_image_bytes: int = 16 * 1024 * 1024

    @property
    def keyring_service(self) -> str:
        """Keyring service name for this site's API key."""
        return f"{APP_NAME}:{self.url.rstrip('/')}"

    def api_key(self) -> str | None:
        """
        Look up the user API key in the system keyring.

        Returns None when no key is stored or no keyring backend is usable;
        the public read-only API still works without one.
        """
        try:
            return keyring.get_password(self.keyring_service, self.username)
        except KeyringError:
            return None


@dataclass
class RenderingConfig:
    """
    Configuration for the render engine and the image codec.

    Attributes:
        image_protocol: "sixel", "none" or "auto" (detect from environment).
        palette_size: Number of colors images are quantized to.
        cell_width: Pixel width of one terminal cell.
        cell_height: Pixel height of one terminal cell.
        max_image_width: Maximum width for inline images (in terminal cells).
        max_image_height: Maximum height for inline images (in terminal cells).
    """
    image_protocol: str = "auto"        # "sixel", "none", or "auto"
    palette_size: int = 256
    cell_width: int = 8
    cell_height: int = 16
    max_image_width: int = 80           # Max image width in terminal columns
    max_image_height: int = 24          # Max image height in terminal rows


@dataclass
class CacheConfig:
    """
    Content cache tuning.

    Attributes:
        budget_bytes: Upper bound on the estimated resident size. Eviction
                      runs on every insert.
    """
    budget_bytes: int = DEFAULT_CACHE_BUDGET


@dataclass
class SessionConfig:
    """
    Event loop and display settings.

    Attributes:
        tick_interval: Seconds between render ticks (loading spinner).
    """
    tick_interval: float = 0.25


@dataclass
class Config:
    """
    Main configuration container for LDUI.

    Attributes:
        forum: Forum site settings.
        rendering: Rendering and image settings.
        cache: Content cache settings.
        session: Event loop settings.
        keys: Key bindings, action name -> key names.

    Usage:
        >>> config = Config.load()
        >>> config.forum.url
        'https://linux.do'
    """
    forum: ForumConfig = field(default_factory=ForumConfig)
    rendering: RenderingConfig = field(default_factory=RenderingConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    keys: dict[str, list[str]] = field(
        default_factory=lambda: {a: list(k) for a, k in DEFAULT_KEY_BINDINGS.items()}
    )

    # -------------------------------------------------------------------------
    # File Paths
    # -------------------------------------------------------------------------

    @staticmethod
    def config_file_path() -> Path:
        """Returns the path to the main config file."""
        return get_xdg_config_home() / "config.toml"

    @staticmethod
    def log_path() -> Path:
        """Returns the path to the log file."""
        return get_xdg_state_home() / "ldui.log"

    @staticmethod
    def cache_dir() -> Path:
        """Returns the cache directory path."""
        return get_xdg_cache_home()

    @staticmethod
    def state_dir() -> Path:
        """Returns the state directory path."""
        return get_xdg_state_home()

    # -------------------------------------------------------------------------
    # Loading and Saving
    # -------------------------------------------------------------------------

    @classmethod
    def load(cls) -> "Config":
        """
        Load configuration from the config file.

        If the config file doesn't exist, returns default configuration.
        Creates necessary directories if they don't exist.

        Raises:
            ConfigError: If the config file exists but is invalid.
        """
        ensure_directories()

        config_path = cls.config_file_path()

        if not config_path.exists():
            return cls()

        try:
            with open(config_path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid config file: {e}") from e
        except OSError as e:
            raise ConfigError(f"Cannot read config file: {e}") from e

        return cls._from_dict(data)

    def save(self) -> None:
        """
        Save configuration to the config file.

        Creates the config directory if it doesn't exist.
        """
        ensure_directories()

        with open(self.config_file_path(), "wb") as f:
            tomli_w.dump(self._to_dict(), f)

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "Config":
        """
        Create a Config object from a dictionary (parsed TOML).

        Raises:
            ConfigError: On values of the wrong type or out of range.
        """
        config = cls()

        try:
            forum = data.get("forum", {})
            config.forum = ForumConfig(
                url=str(forum.get("url", DEFAULT_SITE_URL)).rstrip("/"),
                username=str(forum.get("username", "ldui")),
                timeout=float(forum.get("timeout", 30.0)),
                max_image_bytes=int(forum.get("max_image_bytes", 16 * 1024 * 1024)),
            )

            rendering = data.get("rendering", {})
            config.rendering = RenderingConfig(
                image_protocol=str(rendering.get("image_protocol", "auto")),
                palette_size=int(rendering.get("palette_size", 256)),
                cell_width=int(rendering.get("cell_width", 8)),
                cell_height=int(rendering.get("cell_height", 16)),
                max_image_width=int(rendering.get("max_image_width", 80)),
                max_image_height=int(rendering.get("max_image_height", 24)),
            )

            cache = data.get("cache", {})
            config.cache = CacheConfig(
                budget_bytes=int(cache.get("budget_bytes", DEFAULT_CACHE_BUDGET)),
            )

            session = data.get("session", {})
            config.session = SessionConfig(
                tick_interval=float(session.get("tick_interval", 0.25)),
            )
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigError(f"Invalid config value: {e}") from e

        if config.rendering.image_protocol not in ("auto", "sixel", "none"):
            raise ConfigError(
                f"Unknown image_protocol: {config.rendering.image_protocol!r}"
            )
        if not 2 <= config.rendering.palette_size <= 256:
            raise ConfigError("palette_size must be between 2 and 256")
        if config.cache.budget_bytes <= 0:
            raise ConfigError("budget_bytes must be positive")

        # Key bindings - entries override the defaults action by action
        keys = data.get("keys", {})
        if not isinstance(keys, dict):
            raise ConfigError("[keys] must be a table")
        for action, names in keys.items():
            if action not in DEFAULT_KEY_BINDINGS:
                raise ConfigError(f"Unknown action in [keys]: {action!r}")
            if isinstance(names, str):
                names = [names]
            if not isinstance(names, list) or not all(isinstance(n, str) for n in names):
                raise ConfigError(f"Key binding for {action!r} must be a list of strings")
            config.keys[action] = list(names)

        return config

    def _to_dict(self) -> dict[str, Any]:
        """
        Convert Config to a dictionary for TOML serialization.
        """
        data: dict[str, Any] = {}

        data["forum"] = {
            "url": self.forum.url,
            "username": self.forum.username,
            "timeout": self.forum.timeout,
            "max_image_bytes": self.forum.max_image_bytes,
        }

        data["rendering"] = {
            "image_protocol": self.rendering.image_protocol,
            "palette_size": self.rendering.palette_size,
            "cell_width": self.rendering.cell_width,
            "cell_height": self.rendering.cell_height,
            "max_image_width": self.rendering.max_image_width,
            "max_image_height": self.rendering.max_image_height,
        }

        data["cache"] = {
            "budget_bytes": self.cache.budget_bytes,
        }

        data["session"] = {
            "tick_interval": self.session.tick_interval,
        }

        data["keys"] = {action: list(names) for action, names in self.keys.items()}

        return data


# =============================================================================
# Exceptions
# =============================================================================

class ConfigError(Exception):
    """Raised when there's an error loading or parsing configuration."""
    pass


# =============================================================================
# Utility Functions
# =============================================================================

def print_paths() -> None:
    """
    Print all XDG paths for debugging.
    Useful for users wondering where their config and logs are stored.
    """
    print(f"Config:  {get_xdg_config_home()}")
    print(f"Cache:   {get_xdg_cache_home()}")
    print(f"State:   {get_xdg_state_home()}")
    print()
    print(f"Config file:  {Config.config_file_path()}")
    print(f"Log file:     {Config.log_path()}")
