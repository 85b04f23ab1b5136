"""Logging for the rerunner CLI.

Diagnostics go to stderr; stdout belongs to the watching banner and the run
reports. With a log directory configured, records are also appended to a
rotating ``rerunner.log``, written from a `QueueListener` thread.
"""

from __future__ import annotations

import logging
import queue
import sys
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path

from rerunner.log_context import ContextFilter

LOG_FILE_NAME = "rerunner.log"
MAX_BYTES = 1024 * 1024
BACKUP_COUNT = 2

STDERR_FMT = "%(asctime)s %(levelname)s %(ctx)s%(message)s"
FILE_FMT = "%(asctime)s %(levelname)s %(name)s: %(ctx)s%(message)s"

# Third-party loggers that are too chatty at INFO/DEBUG for a watch loop.
NOISY_LOGGERS = ("watchfiles", "asyncio")

logger = logging.getLogger(__name__)

_LEVEL_COLORS = {
    logging.DEBUG: "\x1b[2m",
    logging.WARNING: "\x1b[33m",
    logging.ERROR: "\x1b[31m",
    logging.CRITICAL: "\x1b[1;31m",
}

_file_listener: QueueListener | None = None


class _LevelFormatter(logging.Formatter):
    """Short level tags, colored when writing to a terminal."""

    def __init__(self, fmt: str, *, color: bool) -> None:
        super().__init__(fmt, datefmt="%H:%M:%S")
        self._color = color

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        prefix = _LEVEL_COLORS.get(record.levelno) if self._color else None
        return f"{prefix}{text}\x1b[0m" if prefix else text


def quiet_library_loggers(level: int = logging.WARNING) -> None:
    """Raise the threshold of `NOISY_LOGGERS` so ``-v`` shows rerunner's own records."""
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level)


def _stderr_handler(level: int, ctx_filter: logging.Filter) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.addFilter(ctx_filter)
    handler.setFormatter(_LevelFormatter(STDERR_FMT, color=sys.stderr.isatty()))
    return handler


def _start_file_logging(log_dir: Path, ctx_filter: logging.Filter) -> logging.Handler:
    """Start the listener writing ``rerunner.log``; return the handler feeding it."""
    global _file_listener  # noqa: PLW0603

    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        log_dir / LOG_FILE_NAME,
        maxBytes=MAX_BYTES,
        backupCount=BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setFormatter(logging.Formatter(FILE_FMT))

    records: queue.Queue[logging.LogRecord] = queue.Queue()
    _file_listener = QueueListener(records, file_handler)
    _file_listener.start()

    handler = QueueHandler(records)
    handler.addFilter(ctx_filter)
    return handler


def stop_logging() -> None:
    """Flush and close the log file, if one is open. Safe to call repeatedly."""
    global _file_listener  # noqa: PLW0603
    if _file_listener is None:
        return
    _file_listener.stop()
    for handler in _file_listener.handlers:
        handler.close()
    _file_listener = None


def setup_logging(
    level: int = logging.WARNING,
    *,
    verbose: bool = False,
    log_dir: Path | None = None,
) -> None:
    """(Re)configure the root logger.

    *verbose* forces DEBUG. The log file, when *log_dir* is given, always
    records DEBUG and above. Calling again replaces the previous setup.
    """
    if verbose:
        level = logging.DEBUG
    stop_logging()

    ctx_filter = ContextFilter()
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(_stderr_handler(level, ctx_filter))
    if log_dir is not None:
        root.addHandler(_start_file_logging(log_dir, ctx_filter))
        root.setLevel(logging.DEBUG)
    else:
        root.setLevel(level)

    quiet_library_loggers()
    logger.debug("Logging configured: level=%s file=%s", logging.getLevelName(level), log_dir)
