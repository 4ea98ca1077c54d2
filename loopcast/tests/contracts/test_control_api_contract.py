"""
Contract tests for the HTTP control API.

A real ControlServer on an ephemeral port drives a mocked supervisor; requests
go through ControlClient (httpx) or raw httpx calls for malformed input.
"""

from unittest.mock import Mock

import httpx
import pytest

from loopcast.config import LoopcastConfig
from loopcast.control.client import ControlClient
from loopcast.control.server import BadRequest, ControlServer, parse_start_body
from loopcast.encoder.supervisor import StreamSupervisor
from loopcast.errors import DurationUnavailable
from loopcast.models import StartResult


@pytest.fixture
def media(tmp_path):
    """Two tracks and one background that exist on disk."""
    files = {}
    for name in ("one.mp3", "two.mp3", "bg.png"):
        path = tmp_path / name
        path.write_bytes(b"\x00" * 16)
        files[name] = str(path)
    return files


@pytest.fixture
def fake_supervisor():
    supervisor = Mock(spec=StreamSupervisor)
    supervisor.is_running.return_value = False
    supervisor.start.return_value = StartResult(True, "Stream started (looping)")
    return supervisor


@pytest.fixture
def server(fake_supervisor):
    config = LoopcastConfig(ingest_url="rtmp://ingest.example/app")
    server = ControlServer(fake_supervisor, config, host="127.0.0.1", port=0)
    server.start()
    yield server
    server.stop()


@pytest.fixture
def client(server):
    return ControlClient("127.0.0.1", server.port, timeout=5.0)


class TestStartRoute:

    def test_start_success(self, client, fake_supervisor, media):
        response = client.start([media["one.mp3"], media["two.mp3"]], [(media["bg.png"], 20)], "KEY")

        assert response == {
            "message": "Stream started (looping)",
            "stream_url": "rtmp://ingest.example/app/KEY",
            "tracks": 2,
            "backgrounds": 1,
        }
        request = fake_supervisor.start.call_args[0][0]
        assert [t.path for t in request.tracks] == [media["one.mp3"], media["two.mp3"]]
        assert request.backgrounds[0].duration == 20.0
        assert request.destination == "rtmp://ingest.example/app/KEY"

    def test_missing_files_dropped(self, client, fake_supervisor, media, tmp_path):
        response = client.start(
            [media["one.mp3"], str(tmp_path / "gone.mp3")],
            [(media["bg.png"], 20), (str(tmp_path / "gone.png"), 10)],
            "KEY",
        )

        assert response["tracks"] == 1
        assert response["backgrounds"] == 1

    def test_no_tracks_on_disk_is_400(self, server, fake_supervisor, media, tmp_path):
        response = httpx.post(
            f"{server.base_url}/stream/start",
            json={
                "tracks": [str(tmp_path / "gone.mp3")],
                "backgrounds": [{"path": media["bg.png"], "duration": 10}],
                "stream_key": "KEY",
            },
        )

        assert response.status_code == 400
        assert "No audio tracks" in response.json()["message"]
        fake_supervisor.start.assert_not_called()

    def test_rejected_start_is_400(self, client, fake_supervisor, media):
        error = DurationUnavailable(media["one.mp3"], "no duration in output (exit code: 1)")
        fake_supervisor.start.return_value = StartResult(False, str(error), error)

        response = client.start([media["one.mp3"]], [(media["bg.png"], 20)], "KEY")

        assert "stream_url" not in response
        assert "Could not read duration" in response["message"]

    def test_missing_stream_key_is_400(self, server, media):
        response = httpx.post(
            f"{server.base_url}/stream/start",
            json={"tracks": [media["one.mp3"]], "backgrounds": [{"path": media["bg.png"], "duration": 10}]},
        )

        assert response.status_code == 400
        assert response.json()["message"] == "No stream key provided"

    def test_malformed_json_is_400(self, server):
        response = httpx.post(
            f"{server.base_url}/stream/start",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["message"].startswith("Invalid JSON")

    def test_supervisor_crash_is_500(self, client, fake_supervisor, media):
        fake_supervisor.start.side_effect = RuntimeError("boom")

        response = httpx.post(
            f"{client.base_url}/stream/start",
            json={
                "tracks": [media["one.mp3"]],
                "backgrounds": [{"path": media["bg.png"], "duration": 10}],
                "stream_key": "KEY",
            },
        )

        assert response.status_code == 500


class TestStopAndStatus:

    def test_stop_when_running(self, client, fake_supervisor):
        fake_supervisor.is_running.return_value = True

        assert client.stop() == {"message": "Stream stopped"}
        fake_supervisor.stop.assert_called_once()

    def test_stop_when_idle(self, client, fake_supervisor):
        assert client.stop() == {"message": "Stream is not running"}

    def test_status(self, client, fake_supervisor):
        assert client.status() == {"running": False}

        fake_supervisor.is_running.return_value = True
        assert client.status() == {"running": True}

    def test_unknown_route_is_404(self, server):
        assert httpx.get(f"{server.base_url}/nope").status_code == 404
        assert httpx.post(f"{server.base_url}/stream/pause", json={}).status_code == 404


class TestClientTransport:

    def test_unreachable_server_returns_none(self):
        client = ControlClient("127.0.0.1", 1, timeout=0.5)

        assert client.status() is None
        assert client.stop() is None


class TestParseStartBody:

    def test_not_an_object(self):
        with pytest.raises(BadRequest):
            parse_start_body(["a"], "rtmp://x/app")

    def test_bad_duration(self, media):
        body = {
            "tracks": [media["one.mp3"]],
            "backgrounds": [{"path": media["bg.png"], "duration": "long"}],
            "stream_key": "KEY",
        }
        with pytest.raises(BadRequest):
            parse_start_body(body, "rtmp://x/app")

    def test_full_url_kept(self, media):
        body = {
            "tracks": [media["one.mp3"]],
            "backgrounds": [{"path": media["bg.png"], "duration": 5}],
            "stream_key": "rtmps://other.example/live/abc",
        }

        request, url = parse_start_body(body, "rtmp://x/app")

        assert url == "rtmps://other.example/live/abc"
        assert request.destination == url
