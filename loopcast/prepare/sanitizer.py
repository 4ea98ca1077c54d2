"""
Byte-level track sanitizer.

Uploaded MP3s regularly carry oversized or malformed tag containers (huge
embedded artwork, broken ID3 frames, APE blocks from old taggers) that make
ffmpeg's demuxer stall or misdetect the stream. The sanitizer cuts those
containers off without decoding the audio:

- leading ID3v2 tag: magic "ID3", syncsafe size in bytes 6-9,
  header length = 10 + size
- trailing ID3v1 tag: 128-byte block starting with "TAG"
- trailing APE tag: "APETAGEX" found within the last 256 bytes

The sanitizer never fails the caller: any problem falls back to the original
file.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Tuple

from loopcast.prepare.cache import FingerprintCache, fingerprint

logger = logging.getLogger(__name__)

ID3V2_MAGIC = b"ID3"
ID3V2_HEADER_SIZE = 10
ID3V1_MAGIC = b"TAG"
ID3V1_SIZE = 128
APE_MAGIC = b"APETAGEX"
APE_FOOTER_SIZE = 32
APE_SEARCH_WINDOW = 256
APE_FLAG_HAS_HEADER = 1 << 31
APE_FLAG_IS_HEADER = 1 << 29

# Never hand out a cleaned file smaller than this
MIN_AUDIO_BYTES = 1024


def decode_syncsafe(raw: bytes) -> int:
    """Decode a 7-bit-per-byte big-endian integer (ID3v2 tag size)."""
    value = 0
    for byte in raw:
        value = (value << 7) | (byte & 0x7F)
    return value


def _ape_tag_start(data: bytes, magic_at: int, end: int, start: int) -> int:
    """Where an APE tag whose magic sits at magic_at begins (falls back to the magic itself)."""
    footer = data[magic_at:magic_at + APE_FOOTER_SIZE]
    if len(footer) != APE_FOOTER_SIZE or magic_at + APE_FOOTER_SIZE != end:
        return magic_at
    tag_size = int.from_bytes(footer[12:16], "little")
    flags = int.from_bytes(footer[20:24], "little")
    if flags & APE_FLAG_IS_HEADER:
        return magic_at
    header = APE_FOOTER_SIZE if flags & APE_FLAG_HAS_HEADER else 0
    candidate = magic_at + APE_FOOTER_SIZE - tag_size - header
    if start <= candidate <= magic_at:
        return candidate
    return magic_at


def find_audio_span(data: bytes) -> Tuple[int, int]:
    """
    Locate the audio payload inside a raw file.

    Returns:
        (start, end) byte offsets; (0, len(data)) when nothing is recognized
    """
    size = len(data)
    start, end = 0, size

    if size >= ID3V2_HEADER_SIZE and data[:3] == ID3V2_MAGIC:
        header_len = ID3V2_HEADER_SIZE + decode_syncsafe(data[6:10])
        if header_len <= size:
            start = header_len
        else:
            logger.debug(f"ID3v2 header claims {header_len} bytes but file has {size}; ignoring")

    if end - start >= ID3V1_SIZE and data[size - ID3V1_SIZE:size - ID3V1_SIZE + 3] == ID3V1_MAGIC:
        end = size - ID3V1_SIZE

    window_start = max(start, size - APE_SEARCH_WINDOW)
    magic_at = data.rfind(APE_MAGIC, window_start, end)
    if magic_at != -1:
        end = _ape_tag_start(data, magic_at, end, start)

    return start, end


class TrackSanitizer:
    """
    Strips tag containers into a temp file, cached by source fingerprint.

    Example:
        ```python
        sanitizer = TrackSanitizer(temp_dir="/var/tmp/loopcast")
        clean_path = sanitizer.sanitize("/media/song.mp3")
        ```
    """

    def __init__(self, temp_dir: Optional[str] = None, cache: Optional[FingerprintCache] = None) -> None:
        self.temp_dir = temp_dir
        self.cache = cache if cache is not None else FingerprintCache("sanitize")

    def sanitize(self, path: str) -> str:
        """
        Return a path whose content is only audio frames.

        Returns the original path when nothing needs stripping, when stripping
        would leave fewer than MIN_AUDIO_BYTES, or on any I/O error.
        """
        try:
            current = fingerprint(path)
        except OSError as e:
            logger.warning(f"Sanitize skipped, cannot stat {path}: {e}")
            return path

        cached = self.cache.lookup(path, current)
        if cached is not None:
            logger.debug(f"Sanitize cache hit: {path} -> {cached}")
            return cached

        try:
            with open(path, "rb") as f:
                data = f.read()
        except OSError as e:
            logger.warning(f"Sanitize skipped, cannot read {path}: {e}")
            return path

        start, end = find_audio_span(data)
        if (start, end) == (0, len(data)):
            logger.debug(f"No tag containers in {path}")
            return path

        if end - start < MIN_AUDIO_BYTES:
            logger.warning(
                f"Sanitize would leave {end - start} bytes of {path} "
                f"(start={start}, end={end}, size={len(data)}); keeping original"
            )
            return path

        temp_path = self._write_span(path, data, start, end)
        if temp_path is None:
            return path

        self.cache.store(path, current, temp_path)
        logger.info(
            f"Sanitized {path}: kept bytes {start}..{end} of {len(data)} -> {temp_path}"
        )
        return temp_path

    def _write_span(self, path: str, data: bytes, start: int, end: int) -> Optional[str]:
        suffix = Path(path).suffix or ".bin"
        try:
            fd, temp_path = tempfile.mkstemp(prefix="loopcast-clean-", suffix=suffix, dir=self.temp_dir)
        except OSError as e:
            logger.warning(f"Sanitize failed for {path}, cannot create temp file: {e}")
            return None

        try:
            with os.fdopen(fd, "wb") as out:
                out.write(memoryview(data)[start:end])
        except OSError as e:
            logger.warning(f"Sanitize failed for {path}, cannot write {temp_path}: {e}")
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            return None
        return temp_path
