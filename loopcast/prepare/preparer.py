"""
Per-track preparation: sanitize, then remux.

Tracks are independent, so a run's playlist is prepared on a small thread
pool. Order of the result matches the order of the input.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence

from loopcast.config import LoopcastConfig
from loopcast.errors import PreparationError
from loopcast.models import PreparedTrack
from loopcast.prepare.remuxer import TrackRemuxer
from loopcast.prepare.sanitizer import TrackSanitizer

logger = logging.getLogger(__name__)


class TrackPreparer:
    """Owns the sanitize/remux stages and their caches."""

    def __init__(
        self,
        sanitizer: TrackSanitizer,
        remuxer: TrackRemuxer,
        max_workers: int = 4,
    ) -> None:
        self.sanitizer = sanitizer
        self.remuxer = remuxer
        self.max_workers = max_workers

    @classmethod
    def from_config(cls, config: LoopcastConfig) -> "TrackPreparer":
        return cls(
            sanitizer=TrackSanitizer(temp_dir=config.temp_dir),
            remuxer=TrackRemuxer(
                ffmpeg_path=config.ffmpeg_path,
                temp_dir=config.temp_dir,
                timeout_sec=config.remux_timeout_sec,
                enabled=not config.disable_remux,
            ),
            max_workers=config.prepare_workers,
        )

    def prepare(self, path: str) -> PreparedTrack:
        sanitized = self.sanitizer.sanitize(path)
        remuxed = self.remuxer.remux(sanitized)
        return PreparedTrack(
            path=remuxed,
            source_path=path,
            was_sanitized=sanitized != path,
            was_remuxed=remuxed != sanitized,
        )

    def prepare_all(self, paths: Sequence[str]) -> List[PreparedTrack]:
        """
        Prepare every track concurrently.

        Raises:
            PreparationError: For the first track (in playlist order) whose
                worker raised
        """
        if not paths:
            return []

        workers = min(self.max_workers, len(paths))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="TrackPrepare") as pool:
            futures = [pool.submit(self.prepare, path) for path in paths]

        prepared: List[PreparedTrack] = []
        for path, future in zip(paths, futures):
            error: Optional[BaseException] = future.exception()
            if error is not None:
                logger.error(f"Track preparation crashed for {path}: {error}", exc_info=error)
                raise PreparationError(path, error)
            prepared.append(future.result())

        sanitized = sum(1 for p in prepared if p.was_sanitized)
        remuxed = sum(1 for p in prepared if p.was_remuxed)
        logger.info(f"Prepared {len(prepared)} tracks ({sanitized} sanitized, {remuxed} remuxed)")
        return prepared

    def cleanup(self) -> int:
        """Best-effort removal of every temp file created so far."""
        removed = self.sanitizer.cache.clear(remove_files=True)
        removed += self.remuxer.cache.clear(remove_files=True)
        if removed:
            logger.info(f"Removed {removed} prepared temp files")
        return removed
