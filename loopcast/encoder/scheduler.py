"""
Serial event scheduler for the stream supervisor.

Subprocess exit notifications and delayed restarts are delivered as callables
on one worker thread, so they can never interleave with each other. Delays are
plain timers that enqueue their callable when they fire; a cancelled handle
never runs.
"""

import logging
import queue
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ScheduledCall:
    """Handle for a delayed callable."""

    def __init__(self, delay: float, fn: Callable[[], None]) -> None:
        self.delay = delay
        self.fn = fn
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()


class Scheduler(ABC):
    """Where the supervisor's events run."""

    @abstractmethod
    def submit(self, fn: Callable[[], None]) -> None:
        """Run fn on the event thread as soon as possible."""
        raise NotImplementedError("Subclasses must implement submit")

    @abstractmethod
    def call_later(self, delay: float, fn: Callable[[], None]) -> ScheduledCall:
        """Run fn on the event thread after delay seconds unless cancelled."""
        raise NotImplementedError("Subclasses must implement call_later")

    @abstractmethod
    def monotonic(self) -> float:
        """Clock used for failure timestamps."""
        raise NotImplementedError("Subclasses must implement monotonic")

    def close(self) -> None:
        """Stop delivering events."""


class SerialScheduler(Scheduler):
    """Single daemon thread draining a queue of callables."""

    _STOP = object()

    def __init__(self, name: str = "SupervisorEvents") -> None:
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._closed = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True, name=name)
        self._thread.start()

    def submit(self, fn: Callable[[], None]) -> None:
        if self._closed.is_set():
            logger.debug("Scheduler closed, dropping event")
            return
        self._queue.put(fn)

    def call_later(self, delay: float, fn: Callable[[], None]) -> ScheduledCall:
        handle = ScheduledCall(delay, fn)

        def fire() -> None:
            if not handle.cancelled:
                self.submit(lambda: None if handle.cancelled else fn())

        timer = threading.Timer(delay, fire)
        timer.daemon = True
        timer.start()
        return handle

    def monotonic(self) -> float:
        return time.monotonic()

    def close(self, timeout: Optional[float] = 1.0) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        self._queue.put(self._STOP)
        if threading.current_thread() is not self._thread:
            self._thread.join(timeout=timeout)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is self._STOP:
                break
            try:
                item()
            except Exception as e:
                # One bad event must not kill event delivery for the stream
                logger.error(f"Supervisor event failed: {e}", exc_info=True)
