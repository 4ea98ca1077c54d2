"""
Contract tests for configuration loading and destination resolution.
"""

import pytest

from loopcast.config import LoopcastConfig, load_config
from loopcast.destination import resolve_stream_url
from loopcast.errors import InvalidRequest

LOOPCAST_VARS = [
    "LOOPCAST_ENV_FILE", "LOOPCAST_FFMPEG_PATH", "LOOPCAST_FFPROBE_PATH", "LOOPCAST_FPS",
    "LOOPCAST_XFADE_SEC", "LOOPCAST_VIDEO_SIZE", "LOOPCAST_VIDEO_BITRATE", "LOOPCAST_AUDIO_BITRATE",
    "LOOPCAST_FORCE_XFADE", "LOOPCAST_FORCE_ACROSSFADE", "LOOPCAST_DISABLE_REMUX",
    "LOOPCAST_MAX_FAILURES", "LOOPCAST_FAILURE_RESET_SEC", "LOOPCAST_TEMP_DIR",
    "LOOPCAST_PREPARE_WORKERS", "LOOPCAST_PROBE_TIMEOUT_SEC", "LOOPCAST_REMUX_TIMEOUT_SEC",
    "LOOPCAST_INGEST_URL", "LOOPCAST_CONTROL_HOST", "LOOPCAST_CONTROL_PORT",
    "LOOPCAST_LOG_LEVEL", "LOOPCAST_LOG_FILE",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """No LOOPCAST_* variables; env file pointed at a path that does not exist."""
    for name in LOOPCAST_VARS:
        # setenv first so teardown also removes values an env file loaded
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    monkeypatch.setenv("LOOPCAST_ENV_FILE", str(tmp_path / "missing.env"))
    return monkeypatch


class TestLoadConfig:

    def test_defaults(self, clean_env):
        config = load_config()

        assert config == LoopcastConfig()
        assert config.fps == 30
        assert config.crossfade_sec == 2.0
        assert config.max_failures == 3
        assert config.failure_reset_sec == 60.0
        assert config.frame_size == (1280, 720)
        assert config.transitions_enabled
        assert config.ingest_url == "rtmp://live.twitch.tv/app"

    def test_environment_overrides(self, clean_env, tmp_path):
        clean_env.setenv("LOOPCAST_FPS", "25")
        clean_env.setenv("LOOPCAST_XFADE_SEC", "0")
        clean_env.setenv("LOOPCAST_FORCE_XFADE", "yes")
        clean_env.setenv("LOOPCAST_DISABLE_REMUX", "1")
        clean_env.setenv("LOOPCAST_VIDEO_SIZE", "1920x1080")
        clean_env.setenv("LOOPCAST_TEMP_DIR", str(tmp_path))
        clean_env.setenv("LOOPCAST_CONTROL_PORT", "9000")

        config = load_config()

        assert config.fps == 25
        assert not config.transitions_enabled
        assert config.force_xfade
        assert not config.force_acrossfade
        assert config.disable_remux
        assert config.frame_size == (1920, 1080)
        assert config.temp_dir == str(tmp_path)
        assert config.control_port == 9000

    def test_env_file_loaded(self, clean_env, tmp_path):
        env_file = tmp_path / "loopcast.env"
        env_file.write_text("LOOPCAST_MAX_FAILURES=7\nLOOPCAST_FFMPEG_PATH=/opt/ffmpeg\n")

        config = load_config(str(env_file))

        assert config.max_failures == 7
        assert config.ffmpeg_path == "/opt/ffmpeg"

    def test_environment_beats_env_file(self, clean_env, tmp_path):
        env_file = tmp_path / "loopcast.env"
        env_file.write_text("LOOPCAST_MAX_FAILURES=7\n")
        clean_env.setenv("LOOPCAST_MAX_FAILURES", "4")

        assert load_config(str(env_file)).max_failures == 4

    @pytest.mark.parametrize("name,value", [
        ("LOOPCAST_FPS", "fast"),
        ("LOOPCAST_FPS", "0"),
        ("LOOPCAST_XFADE_SEC", "-1"),
        ("LOOPCAST_VIDEO_SIZE", "1280by720"),
        ("LOOPCAST_VIDEO_SIZE", "1281x720"),
        ("LOOPCAST_VIDEO_BITRATE", "2500"),
        ("LOOPCAST_MAX_FAILURES", "0"),
        ("LOOPCAST_CONTROL_PORT", "70000"),
        ("LOOPCAST_LOG_LEVEL", "LOUD"),
    ])
    def test_invalid_values_rejected(self, clean_env, name, value):
        clean_env.setenv(name, value)

        with pytest.raises(ValueError):
            load_config()

    def test_missing_temp_dir_rejected(self, clean_env, tmp_path):
        clean_env.setenv("LOOPCAST_TEMP_DIR", str(tmp_path / "nope"))

        with pytest.raises(FileNotFoundError):
            load_config()


class TestResolveStreamUrl:

    def test_key_appended_to_ingest(self):
        assert resolve_stream_url("live_123_abc", "rtmp://live.twitch.tv/app/") == "rtmp://live.twitch.tv/app/live_123_abc"

    @pytest.mark.parametrize("url", ["rtmp://a.example/live/key", "rtmps://b.example:443/app/key"])
    def test_full_url_passes_through(self, url):
        assert resolve_stream_url(url, "rtmp://live.twitch.tv/app") == url

    def test_whitespace_trimmed(self):
        assert resolve_stream_url("  key \n", "rtmp://x/app") == "rtmp://x/app/key"

    @pytest.mark.parametrize("key", ["", "   ", None])
    def test_empty_key_rejected(self, key):
        with pytest.raises(InvalidRequest):
            resolve_stream_url(key, "rtmp://x/app")
