"""Encoder process supervision."""

from loopcast.encoder.command import build_encoder_command
from loopcast.encoder.scheduler import ScheduledCall, Scheduler, SerialScheduler
from loopcast.encoder.supervisor import StreamSupervisor, SupervisorState

__all__ = [
    "ScheduledCall",
    "Scheduler",
    "SerialScheduler",
    "StreamSupervisor",
    "SupervisorState",
    "build_encoder_command",
]
