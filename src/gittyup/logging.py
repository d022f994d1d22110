"""Operator logging for GittyUp.

This is the diagnostic log for whoever runs the client. What participants see
in the room console is the session log held in SessionState, which is separate
and never written here.

Handlers go to a file (``logging.file`` or GITTYUP_LOG) or, when no file is
set, to stderr if it is a terminal. The interactive prompt owns stdout, so
nothing is ever written there. Verbosity: error(0), warning(1), info(2),
verbose(3), trace(4). Raw socket frames are logged at trace.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from gittyup.config.schema import LoggingConfig

TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

logger = logging.getLogger("gittyup")

# Client libraries whose records share our handlers. They chat at info/debug
# about every request and ping, so they stay at warning unless tracing.
LIBRARY_LOGGERS = ("httpx", "httpcore", "websockets")

_handlers: list[logging.Handler] = []

_LEVEL_MAP = {
    "TRACE": TRACE,
    "DEBUG": logging.DEBUG,
    "VERBOSE": VERBOSE,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

_VERBOSITY_MAP = {
    0: logging.ERROR,
    1: logging.WARNING,
    2: logging.INFO,
    3: VERBOSE,
    4: TRACE,
}


class _LowercaseLevelFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        record.levelname = record.levelname.lower()
        return super().format(record)


def resolve_level(config: LoggingConfig | None) -> int:
    """Pick the effective level: verbose (int) wins over level (str)."""
    if config:
        if config.verbose is not None:
            return _VERBOSITY_MAP.get(config.verbose, TRACE)
        if config.level:
            return _LEVEL_MAP.get(config.level.upper(), logging.INFO)
    return logging.INFO


def library_level(level: int) -> int:
    """Level for the client libraries given the package level."""
    return logging.DEBUG if level <= TRACE else max(level, logging.WARNING)


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Install handlers once; later calls are no-ops until reset_logging()."""
    if _handlers:
        return

    level = resolve_level(config)
    formatter = _LowercaseLevelFormatter(
        "%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S"
    )

    log_path = config.file if config and config.file else os.environ.get("GITTYUP_LOG")
    handler: logging.Handler | None = None
    if log_path:
        try:
            handler = logging.FileHandler(
                os.path.expanduser(log_path), mode="a", encoding="utf-8"
            )
        except OSError as e:
            if sys.stderr.isatty():
                print(f"[gittyup] Failed to open log file: {e}", file=sys.stderr)
                handler = logging.StreamHandler(sys.stderr)
    elif sys.stderr.isatty():
        handler = logging.StreamHandler(sys.stderr)

    if handler is None:
        # Keep records away from logging.lastResort, which writes over the prompt
        handler = logging.NullHandler()
    handler.setFormatter(formatter)
    _handlers.append(handler)

    logger.setLevel(level)
    logger.addHandler(handler)
    for name in LIBRARY_LOGGERS:
        library = logging.getLogger(name)
        library.setLevel(library_level(level))
        library.addHandler(handler)
        library.propagate = False


def reset_logging() -> None:
    """Remove the handlers installed by setup_logging() and close them."""
    for handler in _handlers:
        logger.removeHandler(handler)
        for name in LIBRARY_LOGGERS:
            library = logging.getLogger(name)
            library.removeHandler(handler)
            library.propagate = True
            library.setLevel(logging.NOTSET)
        handler.close()
    _handlers.clear()
    logger.setLevel(logging.NOTSET)


def get_logger(name: str | None = None) -> logging.Logger:
    """Return the package logger, or a child such as ``gittyup.session``."""
    if name:
        return logger.getChild(name)
    return logger
