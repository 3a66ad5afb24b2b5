"""Logging setup for the gcdeploy package and its SSH transport."""

from __future__ import annotations

import logging as py_logging
import sys
from pathlib import Path
from typing import TextIO

LOG_LEVELS = {
    "DEBUG": py_logging.DEBUG,
    "INFO": py_logging.INFO,
    "WARN": py_logging.WARNING,
    "WARNING": py_logging.WARNING,
    "ERROR": py_logging.ERROR,
}
PACKAGE_LOGGER = "gcdeploy"
DEFAULT_LOG_PATH = Path("~/.config/gcdeploy/logs/gcdeploy.log")
_FALLBACK_LOG_PATH = Path(".gcdeploy/logs/gcdeploy.log")
_FORMAT = "%(asctime)s %(levelname)s %(name)s:%(lineno)d %(message)s"

# paramiko logs every packet negotiation at DEBUG and banners at INFO.
_TRANSPORT_LOGGERS = ("paramiko",)


def default_log_path() -> Path:
    try:
        return DEFAULT_LOG_PATH.expanduser().resolve()
    except RuntimeError:
        # No resolvable home directory.
        return (Path.cwd() / _FALLBACK_LOG_PATH).resolve()


def level_for(name: str) -> int:
    normalized = name.strip().upper()
    return LOG_LEVELS.get(normalized, py_logging.INFO)


def _open_file_handler(log_file: str | Path, formatter: py_logging.Formatter) -> py_logging.Handler | None:
    try:
        path = Path(log_file).expanduser()
    except RuntimeError:
        path = Path(log_file)
    path = path.resolve()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = py_logging.FileHandler(path, encoding="utf-8")
    except OSError:
        return None
    handler.setLevel(py_logging.DEBUG)
    handler.setFormatter(formatter)
    return handler


def _tune_transport_loggers(level: int) -> None:
    transport_level = py_logging.DEBUG if level <= py_logging.DEBUG else py_logging.WARNING
    for name in _TRANSPORT_LOGGERS:
        py_logging.getLogger(name).setLevel(transport_level)


def configure_logging(
    level: str = "INFO",
    stream: TextIO | None = None,
    *,
    log_file: str | Path | None = None,
) -> py_logging.Logger:
    """(Re)build the package handlers: stderr at ``level`` plus an optional DEBUG file."""
    resolved = level_for(level)
    formatter = py_logging.Formatter(_FORMAT)

    logger = py_logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(resolved)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()

    console = py_logging.StreamHandler(stream or sys.stderr)
    console.setLevel(resolved)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file:
        file_handler = _open_file_handler(log_file, formatter)
        if file_handler is not None:
            logger.addHandler(file_handler)

    logger.propagate = False
    _tune_transport_loggers(resolved)
    return logger
