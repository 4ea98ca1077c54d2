"""
Logging setup for loopcast processes.

Console output always; an optional rotation-tolerant log file. A logrotate
rename or truncate is picked up by WatchedFileHandler, and a failing write
(full disk, vanished directory) must never take the stream down with it.
"""

import logging
import logging.handlers
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class SafeWatchedFileHandler(logging.handlers.WatchedFileHandler):
    """WatchedFileHandler whose I/O errors are swallowed instead of printed."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            super().emit(record)
        except (IOError, OSError):
            pass

    def handleError(self, record: logging.LogRecord) -> None:
        pass


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level name
        log_file: Optional path for a rotation-tolerant file log
    """
    handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    handlers.append(console_handler)

    if log_file:
        try:
            file_handler = SafeWatchedFileHandler(log_file, mode="a")
        except OSError as e:
            # Keep streaming with console logging only
            logging.getLogger(__name__).warning(f"Could not open log file {log_file}: {e}")
        else:
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            handlers.append(file_handler)

    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), handlers=handlers, force=True)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
