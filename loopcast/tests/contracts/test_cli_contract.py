"""
Contract tests for the command line entry point.

Supervisor, control client, logging setup and signal handlers are patched; the
tests check argument handling and exit codes.
"""

import json
from unittest.mock import Mock, patch

import pytest

from loopcast import cli
from loopcast.config import LoopcastConfig
from loopcast.errors import SubprocessExitFailure
from loopcast.models import StartResult


@pytest.fixture
def media(tmp_path):
    files = {}
    for name in ("one.mp3", "bg.png"):
        path = tmp_path / name
        path.write_bytes(b"\x00" * 16)
        files[name] = str(path)
    return files


@pytest.fixture
def quiet_main():
    """main() without env loading, logging reconfiguration or signal handlers."""
    with patch("loopcast.cli.load_config", return_value=LoopcastConfig()), \
            patch("loopcast.cli.setup_logging"), \
            patch("loopcast.cli._install_signal_handlers"):
        yield cli.main


class TestArguments:

    @pytest.mark.parametrize("value,expected", [
        ("/media/bg.png:45", {"path": "/media/bg.png", "duration": 45.0}),
        ("/media/bg.png:2.5", {"path": "/media/bg.png", "duration": 2.5}),
        ("/media/bg.png", {"path": "/media/bg.png", "duration": cli.DEFAULT_BACKGROUND_SEC}),
        ("C:/media/bg.png", {"path": "C:/media/bg.png", "duration": cli.DEFAULT_BACKGROUND_SEC}),
    ])
    def test_parse_background(self, value, expected):
        assert cli.parse_background(value) == expected

    def test_flags_override_playlist(self, tmp_path):
        playlist = tmp_path / "playlist.json"
        playlist.write_text(json.dumps({
            "tracks": ["/media/a.mp3"],
            "backgrounds": [{"path": "/media/bg.png", "duration": 10}],
            "stream_key": "FROM_FILE",
        }))
        args = cli.build_parser().parse_args([
            "run", "--playlist", str(playlist), "--stream-key", "FROM_FLAG",
        ])

        body = cli.build_body(args)

        assert body["tracks"] == ["/media/a.mp3"]
        assert body["stream_key"] == "FROM_FLAG"

    def test_stream_key_and_url_are_exclusive(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["run", "--stream-key", "a", "--url", "rtmp://x/app/b"])


class TestRun:

    def test_rejected_start_exits_1(self, quiet_main, media):
        with patch("loopcast.cli.StreamSupervisor") as supervisor_cls:
            supervisor_cls.return_value.start.return_value = StartResult(False, "No tracks provided")

            code = quiet_main([
                "run", "--track", media["one.mp3"], "--background", f"{media['bg.png']}:10", "--stream-key", "KEY",
            ])

        assert code == cli.EXIT_REJECTED
        supervisor_cls.return_value.close.assert_called_once()

    def test_nothing_on_disk_exits_1(self, quiet_main, tmp_path):
        with patch("loopcast.cli.StreamSupervisor") as supervisor_cls:
            code = quiet_main([
                "run", "--track", str(tmp_path / "gone.mp3"), "--background", str(tmp_path / "gone.png"),
                "--stream-key", "KEY",
            ])

        assert code == cli.EXIT_REJECTED
        supervisor_cls.assert_not_called()

    def test_fatal_breaker_exits_2(self, quiet_main, media):
        def make_supervisor(config, preparer=None, on_fatal=None):
            supervisor = Mock()

            def start(request):
                on_fatal(SubprocessExitFailure(1, None, 3))
                return StartResult(True, "Stream started (looping)")

            supervisor.start.side_effect = start
            return supervisor

        with patch("loopcast.cli.StreamSupervisor", side_effect=make_supervisor):
            code = quiet_main([
                "run", "--track", media["one.mp3"], "--background", media["bg.png"], "--url", "rtmp://x/app/KEY",
            ])

        assert code == cli.EXIT_FATAL


class TestClientCommands:

    def test_status_prints_response(self, quiet_main, capsys):
        with patch("loopcast.cli.ControlClient") as client_cls:
            client_cls.return_value.status.return_value = {"running": True}

            code = quiet_main(["status"])

        assert code == cli.EXIT_OK
        assert json.loads(capsys.readouterr().out) == {"running": True}

    def test_unreachable_server_exits_1(self, quiet_main, capsys):
        with patch("loopcast.cli.ControlClient") as client_cls:
            client_cls.return_value.stop.return_value = None

            assert quiet_main(["stop"]) == cli.EXIT_REJECTED

    def test_start_forwards_playlist(self, quiet_main, capsys):
        with patch("loopcast.cli.ControlClient") as client_cls:
            client_cls.return_value.start.return_value = {"message": "ok", "stream_url": "rtmp://x/app/K"}

            code = quiet_main(["start", "--track", "/media/a.mp3", "--background", "/media/bg.png:12", "--stream-key", "K"])

        assert code == cli.EXIT_OK
        client_cls.return_value.start.assert_called_once_with(["/media/a.mp3"], [("/media/bg.png", 12.0)], "K")

    def test_config_error_exits_1(self, capsys):
        with patch("loopcast.cli.load_config", side_effect=ValueError("Invalid LOOPCAST_FPS: x")):
            assert cli.main(["status"]) == cli.EXIT_REJECTED

        assert "Invalid LOOPCAST_FPS" in capsys.readouterr().err
