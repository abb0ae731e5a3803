"""Logging setup for the camp chat client.

Handlers are attached to the ``campchat`` package logger instead of the root
logger, so an application embedding the engine keeps its own configuration.
Calling :func:`setup_logging` again swaps the handlers it installed earlier
and leaves every other handler alone.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path
from typing import TextIO

__all__ = ["PACKAGE_LOGGER", "setup_logging", "resolve_level", "current_log_path"]

PACKAGE_LOGGER = "campchat"
LOG_FILE_NAME = "campchat.log"

_DEFAULT_LOG_DIR = Path.home() / ".campchat" / "logs"
_HANDLER_NAME = "campchat.managed"
_TRANSPORT_LOGGERS: tuple[str, ...] = ("httpx", "httpcore")
_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: TextIO | None = None,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
) -> Path:
    """Log the package to a rotating ``campchat.log`` and, optionally, ``console``.

    The directory comes from ``log_dir``, then ``CAMPCHAT_LOG_DIR``, then
    ``~/.campchat/logs``. Returns the log file path.
    """

    target_dir = Path(log_dir or os.environ.get("CAMPCHAT_LOG_DIR") or _DEFAULT_LOG_DIR).expanduser()
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / LOG_FILE_NAME

    logger = logging.getLogger(PACKAGE_LOGGER)
    _remove_managed_handlers(logger)

    formatter = logging.Formatter(fmt=_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handlers: list[logging.Handler] = [file_handler]
    if console is not None:
        handlers.append(logging.StreamHandler(console))
    for handler in handlers:
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(level)

    for name in _TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    return log_path


def resolve_level(debug: bool = False) -> int:
    """Pick the log level: ``debug`` wins, then ``CAMPCHAT_LOG_LEVEL``, then INFO."""

    if debug:
        return logging.DEBUG
    name = os.environ.get("CAMPCHAT_LOG_LEVEL", "").strip().upper()
    if not name:
        return logging.INFO
    level = logging.getLevelName(name)
    if isinstance(level, int):
        return level
    logging.getLogger(__name__).warning("Ignoring unknown CAMPCHAT_LOG_LEVEL %r", name)
    return logging.INFO


def current_log_path() -> Path | None:
    """Return the file :func:`setup_logging` is writing to, if any."""

    for handler in logging.getLogger(PACKAGE_LOGGER).handlers:
        if handler.get_name() == _HANDLER_NAME and isinstance(handler, logging.FileHandler):
            return Path(handler.baseFilename)
    return None


def _remove_managed_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        if handler.get_name() == _HANDLER_NAME:
            logger.removeHandler(handler)
            handler.close()
