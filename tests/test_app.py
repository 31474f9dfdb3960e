# =============================================================================
# Application and CLI Tests
# =============================================================================

import io

import pytest

from ldui import __version__
from ldui.app import LduiApp, main, parse_args
from ldui.config import Config
from ldui.session import Screen
from ldui.session.render import ImagePlacement
from ldui.ui.widgets.frame_view import SixelWriter


def test_parse_args_defaults():
    args = parse_args([])
    assert not args.generate_api_key
    assert not args.paths
    assert not args.debug


def test_generate_flag():
    assert parse_args(["-g"]).generate_api_key
    assert parse_args(["--generate-api-key"]).generate_api_key


def test_generate_and_paths_are_exclusive():
    with pytest.raises(SystemExit):
        parse_args(["-g", "--paths"])


def test_version(capsys):
    with pytest.raises(SystemExit) as excinfo:
        parse_args(["--version"])
    assert excinfo.value.code == 0
    assert __version__ in capsys.readouterr().out


def test_paths(xdg_dirs, capsys):
    assert main(["--paths"]) == 0
    assert "config.toml" in capsys.readouterr().out


def test_invalid_config_exits_non_zero(xdg_dirs, capsys):
    Config.config_file_path().parent.mkdir(parents=True, exist_ok=True)
    Config.config_file_path().write_text("[rendering]\npalette_size = 1\n")

    assert main([]) == 1
    assert "Config error" in capsys.readouterr().err


def test_requires_a_terminal(xdg_dirs, monkeypatch, capsys):
    monkeypatch.setattr("ldui.app.setup_logging", lambda debug=False: None)
    monkeypatch.setattr("sys.stdin", io.StringIO())

    assert main([]) == 1
    assert "interactive terminal" in capsys.readouterr().err


def test_generate_runs_key_generator(xdg_dirs, monkeypatch):
    calls = []
    monkeypatch.setattr("ldui.app.setup_logging", lambda debug=False: None)
    monkeypatch.setattr("ldui.app.run_key_generator", lambda config: calls.append(config) or 0)

    assert main(["-g"]) == 0
    assert isinstance(calls[0], Config)


class FakeStream:
    def __init__(self) -> None:
        self.buffer = io.BytesIO()

    def flush(self) -> None:
        pass


def test_sixel_writer_positions_images():
    stream = FakeStream()
    placement = ImagePlacement(row=3, col=10, cols=4, rows=2, key="k", data=b"\x1bPq~\x1b\\")

    SixelWriter(stream).write([placement], origin=(0, 0))

    assert stream.buffer.getvalue() == b"\x1b7\x1b[4;11H\x1bPq~\x1b\\\x1b8"


async def test_app_browses_and_quits(fake_client, text_caps):
    app = LduiApp(Config(), text_caps, api_key="k", client=fake_client)

    async with app.run_test(size=(80, 24)) as pilot:
        for _ in range(5):
            await pilot.pause(0.05)
        session = app.screen.session
        assert "Topic 1" in session.engine.previous.text()

        await pilot.press("j", "enter")
        await pilot.pause(0.1)
        assert session.state.active.screen is Screen.POST_DETAIL
        assert session.state.active.topic_id == 2

        await pilot.press("q")

    assert session.finished
    assert fake_client.closed
