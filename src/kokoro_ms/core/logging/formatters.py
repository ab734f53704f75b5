"""
Log formatters and terminal colors.

    JsonlFormatter          one JSON object per line, for log files
    ColoredConsoleFormatter  "HH:MM:SS [ TAG ] (rid) message key=value"

Colors are disabled when stdout is not a TTY, when NO_COLOR is set
(https://no-color.org/) or when KOKORO_MS_NO_COLOR=1.

Console highlighting follows the synthesis numbers people watch:
    seconds     green < 0.1s <= yellow < 1s <= red
    rtf         real-time factor; green < 0.3 <= yellow < 1.0 <= red
    ttfa_ms     time to first audio; green < 300 <= yellow < 1000 <= red
"""
from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime
from typing import Any, Dict


class Colors:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"
    GRAY = "\033[90m"
    BRIGHT_RED = "\033[91m"
    BRIGHT_GREEN = "\033[92m"
    BRIGHT_YELLOW = "\033[93m"
    BRIGHT_CYAN = "\033[96m"


_TAG_COLORS = {
    "SUCCESS": Colors.BRIGHT_GREEN,
    "FAIL": Colors.BRIGHT_RED,
    "ERROR": Colors.BRIGHT_RED,
    "WARN": Colors.BRIGHT_YELLOW,
    "INFO": Colors.BRIGHT_CYAN,
    "DEBUG": Colors.GRAY,
    "TRACE": Colors.DIM,
}

# (green below, yellow below, red otherwise)
_THRESHOLDS = {
    "rtf": (0.3, 1.0),
    "ttfa_ms": (300, 1000),
    "seconds": (0.1, 1.0),
}


def supports_color() -> bool:
    """Whether ANSI colors should be written to stdout."""
    if os.getenv("KOKORO_MS_NO_COLOR", "0") == "1":
        return False
    if os.getenv("NO_COLOR"):
        return False
    isatty = getattr(sys.stdout, "isatty", None)
    if isatty is None or not isatty():
        return False
    if sys.platform == "win32":
        try:
            import ctypes
            kernel32 = ctypes.windll.kernel32
            # ENABLE_VIRTUAL_TERMINAL_PROCESSING on the stdout handle
            kernel32.SetConsoleMode(kernel32.GetStdHandle(-11), 7)
        except (AttributeError, OSError):
            return False
    return True


def get_tag_color(tag: str) -> str:
    return _TAG_COLORS.get(tag.upper(), Colors.WHITE)


def _threshold_color(key: str, value: Any) -> str:
    bounds = _THRESHOLDS.get(key)
    if bounds is None or not isinstance(value, (int, float)) or isinstance(value, bool):
        return Colors.DIM
    fast, slow = bounds
    if value < fast:
        return Colors.GREEN
    if value < slow:
        return Colors.YELLOW
    return Colors.RED


class JsonlFormatter(logging.Formatter):
    """
    One JSON object per record:

        {"ts": "...", "level": 2, "tag": "INFO", "message": "done",
         "request_id": "abc123", "seconds": 0.41, "extra": {...}}
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created).astimezone().isoformat(),
            "level": getattr(record, "numeric_level", 2),
            "tag": getattr(record, "tag", record.levelname),
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
            "logger": record.name,
        }
        event = getattr(record, "event", None)
        if event:
            payload["event"] = event
        seconds = getattr(record, "seconds", None)
        if seconds is not None:
            payload["seconds"] = seconds
        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            payload["extra"] = extra_data
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """Human-readable console lines, colored when the terminal allows."""

    def __init__(self, use_colors: bool | None = None):
        super().__init__()
        self._use_colors = use_colors

    @property
    def use_colors(self) -> bool:
        if self._use_colors is None:
            from kokoro_ms.core import logging as log_module
            return bool(log_module.USE_COLORS)
        return self._use_colors

    def _paint(self, text: str, color: str) -> str:
        if not self.use_colors:
            return text
        return f"{color}{text}{Colors.RESET}"

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        tag = getattr(record, "tag", record.levelname)
        rid = getattr(record, "request_id", "-")

        parts = [
            self._paint(ts, Colors.DIM),
            self._paint(f"[{tag:^7}]", get_tag_color(tag)),
        ]
        if rid != "-":
            parts.append(self._paint(f"({rid})", Colors.DIM + Colors.CYAN))
        parts.append(record.getMessage())

        event = getattr(record, "event", None)
        if event:
            parts.append(self._paint(f"event={event}", Colors.BLUE))

        seconds = getattr(record, "seconds", None)
        if seconds is not None:
            parts.append(self._paint(f"{seconds:.3f}s", _threshold_color("seconds", seconds)))

        for key, value in (getattr(record, "extra_data", None) or {}).items():
            parts.append(self._paint(f"{key}={value}", _threshold_color(key, value)))

        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line
