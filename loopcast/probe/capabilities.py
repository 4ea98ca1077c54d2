"""
Encoder capability prober.

Answers "does this ffmpeg build have filter X?" by reading the output of
`ffmpeg -hide_banner -filters`. Results are memoized per filter name for the
process lifetime; the binary is assumed not to change under a running
process. A failed listing counts as "not supported" so the graph builder
falls back to the plainest graph instead of erroring.
"""

import logging
import subprocess
import threading
from typing import Dict

logger = logging.getLogger(__name__)


def filter_listed(listing: str, name: str) -> bool:
    """True if any line of the listing contains name as a whole token (case-insensitive)."""
    wanted = name.lower()
    for line in listing.splitlines():
        if wanted in line.lower().split():
            return True
    return False


class CapabilityProber:
    """Per-process cache of filter availability."""

    def __init__(self, ffmpeg_path: str = "ffmpeg", timeout_sec: float = 30.0) -> None:
        self.ffmpeg_path = ffmpeg_path
        self.timeout_sec = timeout_sec
        self._flags: Dict[str, bool] = {}
        self._lock = threading.Lock()

    def supports(self, filter_name: str) -> bool:
        key = filter_name.lower()
        with self._lock:
            if key in self._flags:
                return self._flags[key]
            supported = self._probe(key)
            self._flags[key] = supported
        logger.info(f"Filter '{key}' {'available' if supported else 'NOT available'} in {self.ffmpeg_path}")
        return supported

    def _probe(self, filter_name: str) -> bool:
        try:
            result = subprocess.run(
                [self.ffmpeg_path, "-hide_banner", "-filters"],
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                timeout=self.timeout_sec,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning(f"Could not list ffmpeg filters ({e}); assuming '{filter_name}' is unsupported")
            return False

        if result.returncode != 0:
            logger.warning(
                f"ffmpeg -filters failed (exit code: {result.returncode}); "
                f"assuming '{filter_name}' is unsupported"
            )
            return False

        return filter_listed(result.stdout or "", filter_name)
