"""Media duration prober (ffprobe)."""

import logging
import math
import subprocess

from loopcast.errors import DurationUnavailable

logger = logging.getLogger(__name__)


class DurationProber:
    """Reads a file's container duration with ffprobe."""

    def __init__(self, ffprobe_path: str = "ffprobe", timeout_sec: float = 30.0) -> None:
        self.ffprobe_path = ffprobe_path
        self.timeout_sec = timeout_sec

    def duration(self, path: str) -> float:
        """
        Duration of a media file in seconds.

        Raises:
            DurationUnavailable: Missing, unparsable, non-finite or non-positive
                output, or the tool could not be run
        """
        cmd = [
            self.ffprobe_path,
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            path,
        ]
        try:
            result = subprocess.run(
                cmd,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                timeout=self.timeout_sec,
            )
        except subprocess.TimeoutExpired:
            raise DurationUnavailable(path, f"ffprobe timed out after {self.timeout_sec:.0f}s")
        except OSError as e:
            raise DurationUnavailable(path, f"could not run {self.ffprobe_path}: {e}")

        out = (result.stdout or "").strip()
        if not out:
            stderr = (result.stderr or "").strip()
            raise DurationUnavailable(
                path, f"no duration in output (exit code: {result.returncode}){': ' + stderr if stderr else ''}"
            )

        first = out.splitlines()[0].strip()
        try:
            value = float(first)
        except ValueError:
            raise DurationUnavailable(path, f"unparsable duration {first!r}")

        if not math.isfinite(value) or value <= 0:
            raise DurationUnavailable(path, f"invalid duration {first!r}")

        logger.debug(f"Duration of {path}: {value:.3f}s")
        return value
