"""
utils/logger.py
---------------
Logging setup shared by every module.

Modules call `get_logger(__name__)`. The single root handler writes to
stderr because stdout carries the CLI's JSON and CSV output. The level
comes from LOG_LEVEL and can be changed at runtime with `set_log_level()`.
"""

import logging
import sys
from typing import Optional

from config import LOG_LEVEL

_FORMAT = "%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s | %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"
_QUIET_LOGGERS = ("openpyxl",)
_handler: Optional[logging.Handler] = None


def _install_handler() -> None:
    global _handler
    if _handler is not None:
        return
    _handler = logging.StreamHandler(sys.stderr)
    _handler.setFormatter(logging.Formatter(_FORMAT, _DATEFMT))
    logging.getLogger().addHandler(_handler)
    set_log_level(LOG_LEVEL)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def set_log_level(level: str) -> None:
    """Set the root level by name (DEBUG, INFO, ...). Unknown names mean INFO."""
    value = logging.getLevelName(level.upper())
    logging.getLogger().setLevel(value if isinstance(value, int) else logging.INFO)


def get_logger(name: str) -> logging.Logger:
    """Return the logger for `name`, installing the shared handler on first use."""
    _install_handler()
    return logging.getLogger(name)
