"""Logging setup shared by the API server, the CLI and the signature sweep.

All modules log through ``get_logger(__name__)``. ``setup_logging`` installs
one named stdout handler on the root logger; calling it again only adjusts
the level, so ``create_app`` and the CLI can both call it safely.
"""

import logging
import sys
from typing import TextIO

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
HANDLER_NAME = "receipt-ocr"

# Libraries that are chatty at INFO/DEBUG and drown out submission logs.
_NOISY_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "PIL", "multipart")


def _find_handler(root: logging.Logger) -> logging.Handler | None:
    for handler in root.handlers:
        if handler.get_name() == HANDLER_NAME:
            return handler
    return None


def setup_logging(level: str = "INFO", stream: TextIO | None = None) -> logging.Handler:
    """Install (or re-level) the service log handler on the root logger.

    Args:
        level: Level name; unknown names fall back to INFO.
        stream: Output stream, stdout when ``None``. Only used the first time.

    Returns:
        The service handler.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    root = logging.getLogger()
    handler = _find_handler(root)
    if handler is None:
        handler = logging.StreamHandler(stream or sys.stdout)
        handler.set_name(HANDLER_NAME)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        root.addHandler(handler)
    root.setLevel(numeric_level)

    quiet = logging.WARNING if numeric_level > logging.DEBUG else logging.NOTSET
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet)
    return handler


def get_logger(name: str) -> logging.Logger:
    """Return the logger for a module, typically ``get_logger(__name__)``."""
    return logging.getLogger(name)
