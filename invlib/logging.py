"""Logging helpers for invlib.

Optimizers and solvers report restarts, line-search warnings and abnormal
terminations through module loggers obtained with :func:`get_logger`. All
of them are children of the ``invlib`` logger, which owns the only
handler, so :func:`set_log_level` controls the whole package at once.
"""

import logging
import sys
from typing import Optional, Union

__all__ = ["get_logger", "set_log_level"]

PACKAGE = "invlib"

_FORMAT = "[%(levelname)s] %(name)s: %(message)s"


def _package_logger() -> logging.Logger:
    logger = logging.getLogger(PACKAGE)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(_FORMAT))
        logger.addHandler(handler)
        logger.setLevel(logging.WARNING)
        logger.propagate = False
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get the logger of a module of the package.

    Args:
        name: Module name (typically ``__name__``). Names outside the
            package are nested under ``invlib``. If None, returns the
            package logger.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.debug("restart")
    """
    package = _package_logger()
    if name is None or name == PACKAGE:
        return package
    if not name.startswith(PACKAGE + "."):
        name = f"{PACKAGE}.{name}"
    return logging.getLogger(name)


def set_log_level(level: Union[int, str]) -> None:
    """Set the level of all invlib loggers.

    Args:
        level: Level number or name (``"DEBUG"``, ``"info"``, ...).

    Raises:
        ValueError: If ``level`` is not a known level name.

    Example:
        >>> set_log_level("DEBUG")
    """
    if isinstance(level, str):
        value = logging.getLevelName(level.upper())
        if not isinstance(value, int):
            raise ValueError(f"Unknown logging level: {level!r}")
        level = value
    _package_logger().setLevel(level)
