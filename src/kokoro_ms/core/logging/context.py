"""
Logging context and configuration state.

The request id lives in a ContextVar so it follows a request across
threadpool hops and streaming generators. Module-level state holds the
resolved configuration shared by the whole process.

Environment Variables:
    - KOKORO_MS_LOG_LEVEL: Override log level (1-4 or name)
    - KOKORO_MS_LOG_DIR: Directory for the JSONL log file
    - KOKORO_MS_JSONL_FILE: JSONL filename (default kokoro-ms.jsonl)
    - KOKORO_MS_LOG_ROTATE_BYTES: Max log file size before rotation
    - KOKORO_MS_LOG_ROTATE_BACKUP: Number of rotated files to keep
"""
from __future__ import annotations

import os
from contextvars import ContextVar
from typing import Any, Dict

import yaml

from .levels import LEVEL_NAMES, LogLevel

# "-" marks log lines emitted outside any request
_request_id: ContextVar[str] = ContextVar("request_id", default="-")

_configured: bool = False
_log_config: Dict[str, Any] = {}
_current_level: LogLevel = LogLevel.NORMAL


def get_request_id() -> str:
    return _request_id.get()


def set_request_id(rid: str) -> None:
    """Tag every subsequent log line in this context with ``rid``."""
    _request_id.set(rid)


def get_level() -> LogLevel:
    return _current_level


def set_level(level: LogLevel) -> None:
    global _current_level
    _current_level = level


def get_level_name() -> str:
    return LEVEL_NAMES.get(int(_current_level), "NORMAL")


def is_configured() -> bool:
    return _configured


def set_configured(value: bool) -> None:
    global _configured
    _configured = value


def get_log_config() -> Dict[str, Any]:
    return _log_config


def set_log_config(config: Dict[str, Any]) -> None:
    global _log_config
    _log_config = config


def _env_int(name: str) -> int | None:
    raw = os.getenv(name)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def read_logging_config() -> Dict[str, Any]:
    """
    Resolve the logging section from settings.yaml and the environment.

    Environment variables win over the settings file; a missing or
    unreadable settings file leaves only environment values.
    """
    cfg: Dict[str, Any] = {}

    from kokoro_ms.core.config import load_settings
    try:
        settings = load_settings()
        cfg.update(settings.raw.get("logging", {}) or {})
    except (OSError, yaml.YAMLError) as exc:
        cfg["settings_error"] = str(exc)

    if os.getenv("KOKORO_MS_LOG_LEVEL"):
        cfg["level"] = os.environ["KOKORO_MS_LOG_LEVEL"]
    if os.getenv("KOKORO_MS_LOG_DIR"):
        cfg["log_dir"] = os.environ["KOKORO_MS_LOG_DIR"]
    if os.getenv("KOKORO_MS_JSONL_FILE"):
        cfg["jsonl_file"] = os.environ["KOKORO_MS_JSONL_FILE"]

    rotate_bytes = _env_int("KOKORO_MS_LOG_ROTATE_BYTES")
    if rotate_bytes is not None:
        cfg["rotate_max_bytes"] = rotate_bytes
    rotate_backup = _env_int("KOKORO_MS_LOG_ROTATE_BACKUP")
    if rotate_backup is not None:
        cfg["rotate_backup_count"] = rotate_backup

    return cfg
