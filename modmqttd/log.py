"""Logging set-up for the daemon."""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime
from enum import IntEnum

TRACE_LEVEL = 5
logging.addLevelName(TRACE_LEVEL, "TRACE")

_LOGGER_NAME = "modmqttd"


class Severity(IntEnum):
    none = 0
    critical = 1
    error = 2
    warn = 3
    info = 4
    debug = 5
    trace = 6


_NAMES = ("NONE", "CRITICAL", "ERROR", "WARN ", "INFO ", "DEBUG", "TRACE")

_PYTHON_LEVELS = {
    Severity.critical: logging.CRITICAL,
    Severity.error: logging.ERROR,
    Severity.warn: logging.WARNING,
    Severity.info: logging.INFO,
    Severity.debug: logging.DEBUG,
    Severity.trace: TRACE_LEVEL,
}


def format_severity(level: int) -> str:
    """Return the fixed-width label used in log lines."""
    if 0 <= int(level) < len(_NAMES):
        return _NAMES[int(level)]
    return str(int(level))


def _severity_for(levelno: int) -> Severity:
    if levelno >= logging.CRITICAL:
        return Severity.critical
    if levelno >= logging.ERROR:
        return Severity.error
    if levelno >= logging.WARNING:
        return Severity.warn
    if levelno >= logging.INFO:
        return Severity.info
    if levelno >= logging.DEBUG:
        return Severity.debug
    return Severity.trace


class _SeverityFormatter(logging.Formatter):
    def __init__(self, with_timestamp: bool) -> None:
        super().__init__()
        self._with_timestamp = with_timestamp

    def format(self, record: logging.LogRecord) -> str:
        text = f"[{format_severity(_severity_for(record.levelno))}] {record.getMessage()}"
        if self._with_timestamp:
            stamp = datetime.fromtimestamp(record.created).strftime("%Y-%b-%d %H:%M:%S.%f")
            text = f"{stamp}: {text}"
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return text


class _SinkHandler(logging.StreamHandler):
    """Stream handler installed by init_logging."""


def _stderr_is_journal() -> bool:
    """True if stderr is the stream named in JOURNAL_STREAM."""
    value = os.environ.get("JOURNAL_STREAM")
    if value is None or len(value) <= 2:
        return False
    _, sep, inode = value.partition(":")
    if not sep:
        inode = value
    if not inode:
        return False
    try:
        return str(os.fstat(2).st_ino) == inode
    except OSError:
        return False


def init_logging(level: Severity) -> logging.Handler | None:
    """Send package log records up to ``level`` to stderr.

    Returns the installed handler, or None when logging is switched off.
    """
    level = Severity(level)
    logger = logging.getLogger(_LOGGER_NAME)
    for handler in list(logger.handlers):
        if isinstance(handler, _SinkHandler):
            logger.removeHandler(handler)

    if level is Severity.none:
        logger.setLevel(logging.CRITICAL + 1)
        return None

    handler = _SinkHandler(sys.stderr)
    handler.setFormatter(_SeverityFormatter(not _stderr_is_journal()))
    handler.setLevel(_PYTHON_LEVELS[level])
    logger.addHandler(handler)
    logger.setLevel(_PYTHON_LEVELS[level])
    return handler