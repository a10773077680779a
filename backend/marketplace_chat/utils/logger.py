"""
Logging utilities.

WHAT: Root logger setup for the chat service and the client transport
WHY: Reconnects, dropped frames, and fallback sends must be traceable from the log file
HOW: Console + file handlers; chatty client libraries held at WARNING unless DEBUG
"""

import logging
import sys
from pathlib import Path

from ..core.config import settings

# Per-frame / per-request chatter from the websocket, HTTP, and DB libraries
NOISY_LOGGERS = ("websockets", "httpx", "httpcore", "sqlalchemy.engine")

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(pathname)s:%(lineno)d - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: str | None = None, log_file: str | None = None) -> Path:
    """
    Configure application logging.

    Args:
        level: Root level name; defaults to settings.LOG_LEVEL
        log_file: File handler target; defaults to settings.LOG_FILE

    Returns:
        Path of the log file in use
    """
    level_name = (level or settings.LOG_LEVEL).upper()
    path = Path(log_file or settings.LOG_FILE)
    path.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level_name, logging.INFO))
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    root_logger.addHandler(console_handler)

    file_handler = logging.FileHandler(path)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
    root_logger.addHandler(file_handler)

    library_level = logging.DEBUG if settings.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    root_logger.info(f"Logging initialized (level={level_name}, file={path})")
    return path


def get_logger(name: str) -> logging.Logger:
    """Module logger; call as get_logger(__name__)."""
    return logging.getLogger(name)
