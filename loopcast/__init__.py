"""
loopcast: loops a playlist of audio tracks over background visuals into a
single live video stream pushed to an RTMP endpoint.

The orchestrator prepares tracks (sanitize + remux), probes durations and
encoder capability, builds an ffmpeg filter graph and supervises the
long-running encoder process.
"""

from loopcast.encoder.supervisor import StreamSupervisor, SupervisorState
from loopcast.models import Background, StartResult, StreamRequest, Track

__version__ = "0.3.0"

__all__ = [
    "Background",
    "StartResult",
    "StreamRequest",
    "StreamSupervisor",
    "SupervisorState",
    "Track",
]
