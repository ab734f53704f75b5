"""
Numeric log levels.

kokoro-ms logs with four verbosity levels instead of Python's five
severities, mapped onto stdlib levels so handlers and third-party
loggers keep working:

    MINIMAL (1) -> logging.WARNING   startup, shutdown, failures
    NORMAL  (2) -> logging.INFO      request lifecycle (default)
    VERBOSE (3) -> logging.DEBUG     per-stage timing, per-chunk flow
    DEBUG   (4) -> TRACE (5)         phonemes, token ids, internal state
"""
from __future__ import annotations

import logging
from enum import IntEnum
from typing import Any

TRACE = logging.DEBUG - 5


class LogLevel(IntEnum):
    MINIMAL = 1
    NORMAL = 2
    VERBOSE = 3
    DEBUG = 4


LEVEL_MAP = {
    LogLevel.MINIMAL: logging.WARNING,
    LogLevel.NORMAL: logging.INFO,
    LogLevel.VERBOSE: logging.DEBUG,
    LogLevel.DEBUG: TRACE,
}

LEVEL_NAMES = {level.value: level.name for level in LogLevel}

_NAME_ALIASES = {
    "MINIMAL": LogLevel.MINIMAL,
    "NORMAL": LogLevel.NORMAL,
    "VERBOSE": LogLevel.VERBOSE,
    "DEBUG": LogLevel.DEBUG,
    "TRACE": LogLevel.DEBUG,
    "CRITICAL": LogLevel.MINIMAL,
    "ERROR": LogLevel.MINIMAL,
    "WARNING": LogLevel.MINIMAL,
    "WARN": LogLevel.MINIMAL,
    "INFO": LogLevel.NORMAL,
}


def coerce_level(value: Any) -> LogLevel:
    """
    Convert an int, name or numeric string to a LogLevel.

    Integers 1-4 are taken literally; larger integers are read as
    stdlib levels (logging.INFO -> NORMAL). Anything unparseable
    falls back to NORMAL.

    Examples:
        >>> coerce_level("3")
        <LogLevel.VERBOSE: 3>
        >>> coerce_level(logging.WARNING)
        <LogLevel.MINIMAL: 1>
    """
    if isinstance(value, LogLevel):
        return value

    if isinstance(value, bool):
        return LogLevel.NORMAL

    if isinstance(value, int):
        if 1 <= value <= 4:
            return LogLevel(value)
        if value >= logging.WARNING:
            return LogLevel.MINIMAL
        if value >= logging.INFO:
            return LogLevel.NORMAL
        if value >= logging.DEBUG:
            return LogLevel.VERBOSE
        return LogLevel.DEBUG

    if isinstance(value, str):
        token = value.strip().upper()
        if token.isdigit():
            return coerce_level(int(token))
        return _NAME_ALIASES.get(token, LogLevel.NORMAL)

    return LogLevel.NORMAL
