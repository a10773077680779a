"""
Tests for logging setup.

WHAT: Handler installation, file target, library log levels
WHY: Reconnect and fallback traces must reach the log file without websocket frame spam
HOW: setup_logging against a tmp_path file; root handlers restored afterwards
"""

import logging

import pytest

from marketplace_chat.core.config import settings
from marketplace_chat.utils.logger import NOISY_LOGGERS, get_logger, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    library_levels = {name: logging.getLogger(name).level for name in NOISY_LOGGERS}
    yield root
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    for name, library_level in library_levels.items():
        logging.getLogger(name).setLevel(library_level)


@pytest.mark.unit
class TestSetupLogging:

    def test_writes_to_requested_file(self, tmp_path, restore_root_logger, monkeypatch):
        monkeypatch.setattr(settings, "DEBUG", False)
        target = tmp_path / "logs" / "app.log"

        path = setup_logging(level="DEBUG", log_file=str(target))
        get_logger("marketplace_chat.transport.session").debug("reconnect scheduled")
        for handler in restore_root_logger.handlers:
            handler.flush()

        assert path == target
        assert target.exists()
        assert "reconnect scheduled" in target.read_text()
        assert restore_root_logger.level == logging.DEBUG
        assert len(restore_root_logger.handlers) == 2

    def test_library_loggers_quiet_unless_debug(self, tmp_path, restore_root_logger, monkeypatch):
        monkeypatch.setattr(settings, "DEBUG", False)
        setup_logging(log_file=str(tmp_path / "app.log"))
        assert logging.getLogger("websockets").level == logging.WARNING
        assert logging.getLogger("httpx").level == logging.WARNING

        monkeypatch.setattr(settings, "DEBUG", True)
        setup_logging(log_file=str(tmp_path / "app.log"))
        assert logging.getLogger("websockets").level == logging.DEBUG

    def test_repeated_setup_does_not_stack_handlers(self, tmp_path, restore_root_logger):
        setup_logging(log_file=str(tmp_path / "app.log"))
        setup_logging(log_file=str(tmp_path / "app.log"))

        assert len(restore_root_logger.handlers) == 2
