"""
Configuration management for loopcast.

Reads configuration from an optional .env file and environment variables with
sensible defaults. Real environment variables always win over the .env file.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

# Default .env file location
DEFAULT_ENV_FILE = Path("/etc/loopcast/loopcast.env")

# Canonical audio format for remuxed tracks and the audio program (not configurable)
SAMPLE_RATE = 44100
CHANNELS = 2

_TRUE_VALUES = ("1", "true", "yes", "on")

logger = logging.getLogger(__name__)


def _load_env_file(env_file: Optional[str] = None) -> None:
    """Load environment variables from .env file if it exists."""
    env_path = Path(env_file or os.getenv("LOOPCAST_ENV_FILE", str(DEFAULT_ENV_FILE)))
    if env_path.exists():
        load_dotenv(env_path, override=False)
        logger.debug(f"Loaded environment from {env_path}")


def _env_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Invalid {name}: {raw} (must be an integer)")


def _env_float(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"Invalid {name}: {raw} (must be a number)")


def _env_bool(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in _TRUE_VALUES


def _env_str(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name, default)
    if value == "":
        return default
    return value


@dataclass
class LoopcastConfig:
    """loopcast configuration loaded from .env file and environment variables."""

    # External binaries
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Program shape
    fps: int = 30
    crossfade_sec: float = 2.0
    video_size: str = "1280x720"
    video_bitrate: str = "2500k"
    audio_bitrate: str = "160k"

    # Feature toggles
    force_xfade: bool = False
    force_acrossfade: bool = False
    disable_remux: bool = False

    # Circuit breaker
    max_failures: int = 3
    failure_reset_sec: float = 60.0

    # Preparation
    temp_dir: Optional[str] = None
    prepare_workers: int = 4
    probe_timeout_sec: float = 30.0
    remux_timeout_sec: float = 600.0

    # Destination / control API
    ingest_url: str = "rtmp://live.twitch.tv/app"
    control_host: str = "127.0.0.1"
    control_port: int = 8095

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @property
    def frame_size(self) -> Tuple[int, int]:
        """Output frame as (width, height)."""
        width, height = self.video_size.lower().split("x")
        return int(width), int(height)

    @property
    def transitions_enabled(self) -> bool:
        """A zero crossfade window switches both transition filters off."""
        return self.crossfade_sec > 0

    @classmethod
    def load_config(cls, env_file: Optional[str] = None) -> "LoopcastConfig":
        """
        Load configuration from environment variables.

        Args:
            env_file: Optional .env path (default: LOOPCAST_ENV_FILE or /etc/loopcast/loopcast.env)

        Returns:
            LoopcastConfig instance with loaded values

        Raises:
            ValueError: If configuration is invalid
        """
        _load_env_file(env_file)

        config = cls(
            ffmpeg_path=_env_str("LOOPCAST_FFMPEG_PATH", "ffmpeg"),
            ffprobe_path=_env_str("LOOPCAST_FFPROBE_PATH", "ffprobe"),
            fps=_env_int("LOOPCAST_FPS", "30"),
            crossfade_sec=_env_float("LOOPCAST_XFADE_SEC", "2"),
            video_size=_env_str("LOOPCAST_VIDEO_SIZE", "1280x720"),
            video_bitrate=_env_str("LOOPCAST_VIDEO_BITRATE", "2500k"),
            audio_bitrate=_env_str("LOOPCAST_AUDIO_BITRATE", "160k"),
            force_xfade=_env_bool("LOOPCAST_FORCE_XFADE"),
            force_acrossfade=_env_bool("LOOPCAST_FORCE_ACROSSFADE"),
            disable_remux=_env_bool("LOOPCAST_DISABLE_REMUX"),
            max_failures=_env_int("LOOPCAST_MAX_FAILURES", "3"),
            failure_reset_sec=_env_float("LOOPCAST_FAILURE_RESET_SEC", "60"),
            temp_dir=_env_str("LOOPCAST_TEMP_DIR", None),
            prepare_workers=_env_int("LOOPCAST_PREPARE_WORKERS", "4"),
            probe_timeout_sec=_env_float("LOOPCAST_PROBE_TIMEOUT_SEC", "30"),
            remux_timeout_sec=_env_float("LOOPCAST_REMUX_TIMEOUT_SEC", "600"),
            ingest_url=_env_str("LOOPCAST_INGEST_URL", "rtmp://live.twitch.tv/app"),
            control_host=_env_str("LOOPCAST_CONTROL_HOST", "127.0.0.1"),
            control_port=_env_int("LOOPCAST_CONTROL_PORT", "8095"),
            log_level=_env_str("LOOPCAST_LOG_LEVEL", "INFO"),
            log_file=_env_str("LOOPCAST_LOG_FILE", None),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: If configuration is invalid
        """
        if self.fps <= 0 or self.fps > 120:
            raise ValueError(f"Invalid fps: {self.fps} (must be 1-120)")

        if self.crossfade_sec < 0:
            raise ValueError(f"Invalid crossfade: {self.crossfade_sec} (must be >= 0)")

        try:
            width, height = self.frame_size
        except ValueError:
            raise ValueError(f"Invalid video size: {self.video_size} (must be WIDTHxHEIGHT)")
        if width <= 0 or height <= 0 or width % 2 or height % 2:
            raise ValueError(f"Invalid video size: {self.video_size} (dimensions must be positive and even)")

        for name, bitrate in (("video", self.video_bitrate), ("audio", self.audio_bitrate)):
            if not bitrate.endswith("k"):
                raise ValueError(f"Invalid {name} bitrate format: {bitrate} (must end with 'k', e.g., '160k')")
            try:
                value = int(bitrate[:-1])
            except ValueError:
                raise ValueError(f"Invalid {name} bitrate: {bitrate}")
            if value <= 0:
                raise ValueError(f"Invalid {name} bitrate value: {value}")

        if self.max_failures < 1:
            raise ValueError(f"Invalid max failures: {self.max_failures} (must be >= 1)")

        if self.failure_reset_sec <= 0:
            raise ValueError(f"Invalid failure reset window: {self.failure_reset_sec} (must be > 0)")

        if self.prepare_workers < 1:
            raise ValueError(f"Invalid prepare workers: {self.prepare_workers} (must be >= 1)")

        if self.probe_timeout_sec <= 0 or self.remux_timeout_sec <= 0:
            raise ValueError("Probe and remux timeouts must be > 0")

        if self.control_port < 1 or self.control_port > 65535:
            raise ValueError(f"Invalid control port: {self.control_port} (must be 1-65535)")

        if self.temp_dir is not None and not Path(self.temp_dir).is_dir():
            raise FileNotFoundError(f"LOOPCAST_TEMP_DIR does not exist: {self.temp_dir}")

        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_log_levels:
            raise ValueError(
                f"Invalid log level: {self.log_level} "
                f"(must be one of: {', '.join(valid_log_levels)})"
            )


def load_config(env_file: Optional[str] = None) -> LoopcastConfig:
    """
    Load and validate loopcast configuration from environment variables.

    Returns:
        LoopcastConfig instance with loaded and validated values

    Raises:
        ValueError: If configuration is invalid
    """
    try:
        return LoopcastConfig.load_config(env_file)
    except (ValueError, FileNotFoundError) as e:
        logger.error(f"Configuration error: {e}")
        raise
