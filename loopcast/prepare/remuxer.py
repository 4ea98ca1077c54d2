"""
Track remuxer.

Transcodes a (sanitized) track to 16-bit PCM WAV at the canonical sample rate
and stereo layout, dropping every non-audio stream, all metadata and
chapters. Decoder quirks of the source format then can no longer break the
long-running encoder. Failures degrade to the input path.
"""

import logging
import os
import subprocess
import tempfile
from typing import List, Optional

from loopcast.config import CHANNELS, SAMPLE_RATE
from loopcast.prepare.cache import FingerprintCache, fingerprint

logger = logging.getLogger(__name__)

# How much ffmpeg stderr to keep in the log on failure
STDERR_TAIL_CHARS = 2000


class TrackRemuxer:
    """Runs ffmpeg to normalize a track into a metadata-free WAV intermediate."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        temp_dir: Optional[str] = None,
        timeout_sec: float = 600.0,
        enabled: bool = True,
        cache: Optional[FingerprintCache] = None,
    ) -> None:
        self.ffmpeg_path = ffmpeg_path
        self.temp_dir = temp_dir
        self.timeout_sec = timeout_sec
        self.enabled = enabled
        self.cache = cache if cache is not None else FingerprintCache("remux")

    def build_command(self, source: str, target: str) -> List[str]:
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-nostdin",
            "-loglevel", "error",
            "-y",
            "-fflags", "+discardcorrupt",
            "-err_detect", "ignore_err",
            "-i", source,
            "-map", "0:a:0",
            "-vn", "-sn", "-dn",
            "-map_metadata", "-1",
            "-map_chapters", "-1",
            "-c:a", "pcm_s16le",
            "-ar", str(SAMPLE_RATE),
            "-ac", str(CHANNELS),
            "-f", "wav",
            target,
        ]

    def remux(self, path: str) -> str:
        """
        Return the path of a PCM WAV copy of the track.

        Passthrough when disabled; the input path on any failure.
        """
        if not self.enabled:
            return path

        try:
            current = fingerprint(path)
        except OSError as e:
            logger.warning(f"Remux skipped, cannot stat {path}: {e}")
            return path

        cached = self.cache.lookup(path, current)
        if cached is not None:
            logger.debug(f"Remux cache hit: {path} -> {cached}")
            return cached

        try:
            fd, target = tempfile.mkstemp(prefix="loopcast-pcm-", suffix=".wav", dir=self.temp_dir)
            os.close(fd)
        except OSError as e:
            logger.warning(f"Remux skipped for {path}, cannot create temp file: {e}")
            return path

        cmd = self.build_command(path, target)
        logger.debug(f"Remux command: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                timeout=self.timeout_sec,
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"Remux of {path} timed out after {self.timeout_sec:.0f}s; using input as-is")
            self._discard(target)
            return path
        except OSError as e:
            logger.warning(f"Remux of {path} could not run {self.ffmpeg_path}: {e}")
            self._discard(target)
            return path

        if result.returncode != 0:
            stderr = (result.stderr or b"").decode("utf-8", errors="ignore").strip()
            logger.warning(
                f"Remux of {path} failed (exit code: {result.returncode}); using input as-is"
                + (f": {stderr[-STDERR_TAIL_CHARS:]}" if stderr else "")
            )
            self._discard(target)
            return path

        self.cache.store(path, current, target)
        logger.info(f"Remuxed {path} -> {target}")
        return target

    @staticmethod
    def _discard(target: str) -> None:
        try:
            os.unlink(target)
        except OSError:
            pass
