"""
Track preparation subsystem.

- TrackSanitizer: strips tag containers at byte level
- TrackRemuxer: normalizes to a PCM WAV intermediate through ffmpeg
- TrackPreparer: runs both per track on a thread pool
"""

from loopcast.prepare.cache import CacheEntry, FingerprintCache, fingerprint
from loopcast.prepare.preparer import TrackPreparer
from loopcast.prepare.remuxer import TrackRemuxer
from loopcast.prepare.sanitizer import TrackSanitizer

__all__ = [
    "CacheEntry",
    "FingerprintCache",
    "TrackPreparer",
    "TrackRemuxer",
    "TrackSanitizer",
    "fingerprint",
]
