"""ffmpeg/ffprobe probing: filter capability and media duration."""

from loopcast.probe.capabilities import CapabilityProber, filter_listed
from loopcast.probe.duration import DurationProber

__all__ = [
    "CapabilityProber",
    "DurationProber",
    "filter_listed",
]
