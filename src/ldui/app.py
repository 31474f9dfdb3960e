# =============================================================================
# LDUI Main Application
# =============================================================================
# The Textual application and the command-line entry point.
#
# The app itself is thin: it owns the forum client and shows a single
# SessionScreen. Navigation, fetching and rendering all happen in the
# session engine (ldui.session); Textual only provides the terminal,
# the input events and the painting.
#
# Command line:
#   ldui                      browse the configured forum
#   ldui -g                   generate a User API Key interactively
#   ldui --paths              print config/cache/log locations
#   ldui --debug              verbose logging to the log file
# =============================================================================

import argparse
import logging
import sys

from textual.app import App

from ldui import __app_name__, __version__
from ldui.api.client import ForumClient
from ldui.api.keygen import run_key_generator
from ldui.config import Config, ConfigError, ensure_directories, print_paths
from ldui.rendering.images import TerminalCapabilities, detect_terminal_capabilities
from ldui.ui.screens.session import SessionScreen

logger = logging.getLogger(__name__)


class LduiApp(App):
    """
    The LDUI application.

    Attributes:
        config: The loaded application configuration.
        caps: Terminal graphics capabilities, decided before startup.
        client: Forum API client shared with the session.
    """

    TITLE = "LDUI"
    SUB_TITLE = "Discourse in the terminal"

    ENABLE_COMMAND_PALETTE = False

    CSS = """
    Screen {
        background: $background;
    }
    """

    def __init__(
        self,
        config: Config,
        caps: TerminalCapabilities,
        api_key: str | None = None,
        client: ForumClient | None = None,
    ) -> None:
        """
        Args:
            config: Application configuration.
            caps: Terminal capabilities.
            api_key: User API key, if one is stored.
            client: Pre-built client (tests); built from config otherwise.
        """
        super().__init__()
        self.config = config
        self.caps = caps
        self.api_key = api_key
        self.client = client or ForumClient(
            config.forum.url,
            api_key,
            timeout=config.forum.timeout,
            max_image_bytes=config.forum.max_image_bytes,
        )

    async def on_mount(self) -> None:
        """Called when the application is mounted and ready."""
        if not self.api_key:
            self.notify(
                f"No API key stored; browsing {self.config.forum.url} anonymously. "
                f"Run '{__app_name__} -g' to generate one.",
                severity="warning",
                timeout=8,
            )
        await self.push_screen(SessionScreen(self.config, self.client, self.caps))

    async def on_unmount(self) -> None:
        await self.client.close()


# =============================================================================
# CLI Entry Point
# =============================================================================

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        prog=__app_name__,
        description="LDUI: a Discourse forum client for the terminal",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "-g",
        "--generate-api-key",
        action="store_true",
        help="Generate a User API Key for the forum and exit",
    )
    mode.add_argument(
        "--paths",
        action="store_true",
        help="Print configuration paths and exit",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode (verbose logging)",
    )

    return parser.parse_args(argv)


def setup_logging(debug: bool = False) -> None:
    """
    Send log records to the state-directory log file.

    The terminal belongs to the UI, so nothing is logged to stderr.
    """
    ensure_directories()
    handler = logging.FileHandler(Config.log_path(), encoding="utf-8")
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )

    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.INFO)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug else logging.WARNING)


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point for LDUI.

    This function:
        1. Parses command-line arguments
        2. Handles special commands (--paths, -g)
        3. Loads configuration and sets up logging
        4. Detects terminal capabilities
        5. Starts the Textual application

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = parse_args(argv)

    if args.paths:
        print_paths()
        return 0

    try:
        config = Config.load()
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 1

    try:
        setup_logging(args.debug)
    except OSError as e:
        print(f"Could not open log file: {e}", file=sys.stderr)
        return 1

    logger.info(f"Starting {__app_name__} {__version__}")

    if args.generate_api_key:
        return run_key_generator(config)

    if not (sys.stdin.isatty() and sys.stdout.isatty()):
        print(f"{__app_name__} needs an interactive terminal", file=sys.stderr)
        return 1

    api_key = config.forum.api_key()
    if not api_key:
        print(f"Hint: no API key stored, run '{__app_name__} -g' to generate one.")

    caps = detect_terminal_capabilities(
        config.rendering.image_protocol,
        config.rendering.palette_size,
        (config.rendering.cell_width, config.rendering.cell_height),
    )

    app = LduiApp(config, caps, api_key=api_key)
    try:
        app.run()
    except OSError as e:
        logger.exception("Terminal error")
        print(f"Terminal error: {e}", file=sys.stderr)
        return 1

    return app.return_code or 0


if __name__ == "__main__":
    sys.exit(main())
