"""Logging setup for the stocktake command line.

Library modules only ever call ``logging.getLogger(__name__)``; handlers are
attached here, once, by whoever owns the process.
"""
from __future__ import annotations

import logging
from pathlib import Path

SYSTEM_FMT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
ROOT_LOGGER = "stocktake"


def _level(value: "str | int") -> int:
    if isinstance(value, int):
        return value
    resolved = logging.getLevelName(str(value).strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {value}")
    return resolved


def configure_logging(level: "str | int" = "WARNING", log_file: "str | Path | None" = None) -> logging.Logger:
    """Attach a console handler (and optionally a file handler) to the package logger.

    Calling it again replaces the handlers instead of stacking duplicates.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(_level(level))
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    sh = logging.StreamHandler()
    sh.setFormatter(logging.Formatter(SYSTEM_FMT))
    logger.addHandler(sh)

    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(path, encoding="utf-8")
        fh.setFormatter(logging.Formatter(SYSTEM_FMT))
        logger.addHandler(fh)

    logger.propagate = False
    return logger
