"""
Content-addressed cache for prepared track files.

Entries map a source path to the temp file derived from it, keyed by the
source's (mtime_ns, size) fingerprint. A changed fingerprint invalidates the
entry; a hit also requires the temp file to still be on disk. Entries live for
the process lifetime only and are never persisted.
"""

import logging
import os
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

Fingerprint = Tuple[int, int]


def fingerprint(path: str) -> Fingerprint:
    """
    Return (modification time in ns, byte size) for a file.

    Raises:
        OSError: If the file cannot be stat'ed
    """
    st = os.stat(path)
    return st.st_mtime_ns, st.st_size


@dataclass(frozen=True)
class CacheEntry:
    source_path: str
    temp_path: str
    fingerprint: Fingerprint


class FingerprintCache:
    """
    Thread-safe map of source path -> CacheEntry for one preparation stage.

    Lookups and inserts for different keys may run concurrently from the
    preparation pool.
    """

    def __init__(self, stage: str) -> None:
        self.stage = stage
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def lookup(self, source_path: str, current: Fingerprint) -> Optional[str]:
        """Return the cached temp path if the fingerprint matches and the file still exists."""
        with self._lock:
            entry = self._entries.get(source_path)
        if entry is None or entry.fingerprint != current:
            return None
        if not os.path.exists(entry.temp_path):
            logger.debug(f"[{self.stage}] cached file vanished: {entry.temp_path}")
            return None
        return entry.temp_path

    def store(self, source_path: str, current: Fingerprint, temp_path: str) -> None:
        with self._lock:
            self._entries[source_path] = CacheEntry(source_path, temp_path, current)

    def temp_paths(self) -> List[str]:
        with self._lock:
            return [entry.temp_path for entry in self._entries.values()]

    def clear(self, remove_files: bool = False) -> int:
        """
        Forget all entries, optionally deleting their temp files.

        Returns:
            Number of temp files removed
        """
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()

        removed = 0
        if remove_files:
            for entry in entries:
                try:
                    os.unlink(entry.temp_path)
                    removed += 1
                except FileNotFoundError:
                    pass
                except OSError as e:
                    logger.warning(f"[{self.stage}] could not remove {entry.temp_path}: {e}")
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
