"""
Encoder process watcher.

One daemon thread per spawned encoder: drains stderr line by line into the
log (ffmpeg blocks once an undrained pipe fills up), then waits for the
process and reports its exit status through a callback.
"""

import logging
import subprocess
import threading
from collections import deque
from typing import Callable, Deque

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 20

ExitCallback = Callable[[int, int, str], None]


class ProcessWatcher:
    """
    Watches one encoder process.

    Args:
        process: Popen-like handle (stderr may be None)
        generation: Spawn generation this process belongs to
        on_exit: Called once with (generation, returncode, stderr_tail)
    """

    def __init__(self, process: subprocess.Popen, generation: int, on_exit: ExitCallback) -> None:
        self.process = process
        self.generation = generation
        self._on_exit = on_exit
        self._tail: Deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self.thread = threading.Thread(
            target=self._run,
            daemon=True,
            name=f"EncoderWatcher-{generation}",
        )

    def start(self) -> None:
        self.thread.start()

    @property
    def stderr_tail(self) -> str:
        return "\n".join(self._tail)

    def _run(self) -> None:
        stderr = self.process.stderr
        if stderr is not None:
            try:
                for raw in iter(stderr.readline, b""):
                    line = raw.decode("utf-8", errors="ignore").rstrip()
                    if line:
                        self._tail.append(line)
                        logger.warning(f"[FFMPEG] {line}")
            except (OSError, ValueError) as e:
                logger.debug(f"Encoder stderr drain ended: {e}")

        returncode = self.process.wait()
        logger.debug(f"Encoder PID={self.process.pid} exited with {returncode}")
        self._on_exit(self.generation, returncode, self.stderr_tail)
