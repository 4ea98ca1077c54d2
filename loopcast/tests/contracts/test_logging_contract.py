"""
Contract tests for logging setup.
"""

import logging
from unittest.mock import Mock

import pytest

from loopcast.logging_setup import SafeWatchedFileHandler, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestSetupLogging:

    def test_file_log_written(self, tmp_path, restore_root_logger):
        log_file = tmp_path / "loopcast.log"

        setup_logging("DEBUG", str(log_file))
        logging.getLogger("loopcast.test").info("hello from the encoder")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert "hello from the encoder" in log_file.read_text()
        assert logging.getLogger().level == logging.DEBUG

    def test_unopenable_log_file_keeps_console(self, tmp_path, restore_root_logger):
        setup_logging("INFO", str(tmp_path / "missing-dir" / "loopcast.log"))

        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        assert not isinstance(handlers[0], SafeWatchedFileHandler)

    def test_httpx_quieted(self, restore_root_logger):
        setup_logging("DEBUG")

        assert logging.getLogger("httpx").level == logging.WARNING


class TestSafeWatchedFileHandler:

    def test_write_errors_swallowed(self, tmp_path):
        handler = SafeWatchedFileHandler(str(tmp_path / "x.log"))
        real_stream = handler.stream
        handler.stream = Mock(write=Mock(side_effect=OSError(28, "No space left on device")))
        record = logging.LogRecord("loopcast", logging.INFO, __file__, 1, "after close", None, None)

        try:
            handler.emit(record)
        finally:
            handler.stream = real_stream
            handler.close()
