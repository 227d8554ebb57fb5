"""
Logging setup for the reqlang command line.

Handlers attach to the `backend.reqlang` package logger, not the root
logger. Only handlers added here are ever adjusted or removed.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import List, Optional, Union

PACKAGE_LOGGER = "backend.reqlang"
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"

_LEVELS_BY_VERBOSE = {
    0: logging.WARNING,
    1: logging.INFO,
}


def verbosity_level(verbose: int) -> int:
    """Console level for a -v count: WARNING, INFO, then DEBUG from -vv up."""
    return _LEVELS_BY_VERBOSE.get(max(verbose, 0), logging.DEBUG)


def _own(handler: logging.Handler) -> logging.Handler:
    handler._reqlang_handler = True  # type: ignore[attr-defined]
    return handler


def _owned(logger: logging.Logger) -> List[logging.Handler]:
    return [h for h in logger.handlers if getattr(h, "_reqlang_handler", False)]


def setup_logging(
    *,
    console_level: int = logging.WARNING,
    file_path: Optional[Union[str, Path]] = None,
    file_level: int = logging.DEBUG,
    replace_existing: bool = True,
) -> logging.Logger:
    """
    Configure the package logger with a stderr handler and an optional log file.

    Repeated calls reuse the handlers added before. With
    `replace_existing`, log files other than `file_path` are closed and a
    new log file is truncated; otherwise it is appended to.

    Returns:
        The package logger.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    formatter = logging.Formatter(LOG_FORMAT)

    console = next((h for h in _owned(logger) if not isinstance(h, logging.FileHandler)), None)
    if console is None:
        console = _own(logging.StreamHandler(sys.stderr))
        logger.addHandler(console)
    console.setLevel(console_level)
    console.setFormatter(formatter)

    path = Path(file_path).resolve() if file_path else None
    current = None
    for handler in _owned(logger):
        if not isinstance(handler, logging.FileHandler):
            continue
        if path is not None and Path(handler.baseFilename).resolve() == path:
            current = handler
        elif replace_existing:
            logger.removeHandler(handler)
            handler.close()

    if path is None:
        return logger
    if current is None:
        path.parent.mkdir(parents=True, exist_ok=True)
        current = _own(logging.FileHandler(path, mode="w" if replace_existing else "a", encoding="utf-8"))
        logger.addHandler(current)
    current.setLevel(file_level)
    current.setFormatter(formatter)
    return logger


__all__ = ["LOG_FORMAT", "PACKAGE_LOGGER", "setup_logging", "verbosity_level"]
