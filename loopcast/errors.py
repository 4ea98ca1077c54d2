"""
Error taxonomy for loopcast.

Request validation and graph construction errors are reported back to the
caller of StreamSupervisor.start(). Encoder exit failures are recovered by the
supervisor until the circuit breaker trips; only then is a
SubprocessExitFailure handed upstream.

Sanitize/remux problems are deliberately absent: those stages degrade to the
less processed input and only log.
"""

from typing import Optional


class LoopcastError(Exception):
    """Base class for all loopcast errors."""


class InvalidRequest(LoopcastError):
    """Stream request rejected before any side effect (empty playlist, bad durations)."""


class DurationUnavailable(LoopcastError):
    """The probing tool could not report a usable duration for a media file."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Could not read duration for {path}: {reason}")


class GraphConstructionError(LoopcastError):
    """The filter graph could not be built from the supplied durations."""


class NoContent(GraphConstructionError):
    """Zero backgrounds or zero tracks reached the graph builder."""


class PreparationError(LoopcastError):
    """Unexpected failure while preparing a track (sanitize/remux worker crashed)."""

    def __init__(self, path: str, cause: BaseException) -> None:
        self.path = path
        self.cause = cause
        super().__init__(f"Failed to prepare {path}: {cause}")


class SubprocessSpawnError(LoopcastError):
    """The encoder binary could not be launched."""


class SubprocessExitFailure(LoopcastError):
    """
    Encoder kept failing until the circuit breaker tripped.

    Attributes:
        returncode: Exit status of the last failed process (None if killed by signal)
        signal: Terminating signal number of the last failed process, if any
        failures: Number of consecutive failures counted when the breaker tripped
    """

    def __init__(self, returncode: Optional[int], signal: Optional[int], failures: int) -> None:
        self.returncode = returncode
        self.signal = signal
        self.failures = failures
        if signal is not None:
            detail = f"signal {signal}"
        else:
            detail = f"exit code {returncode}"
        super().__init__(
            f"Encoder failed {failures} times in a row (last: {detail}); streaming halted"
        )
