"""Logging setup: concise stream output plus a rotating JSONL logfile."""

from __future__ import annotations

import contextvars
import json
import logging
import os
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

from pr_monitor.config_schema import default_user_config_dir

LOG_DIR_ENV_VAR = "PR_MONITOR_LOG_DIR"
LOG_MAX_BYTES_ENV_VAR = "PR_MONITOR_LOG_MAX_BYTES"
LOG_BACKUPS_ENV_VAR = "PR_MONITOR_LOG_BACKUPS"
DEFAULT_LOG_MAX_BYTES = 5 * 1024 * 1024
DEFAULT_LOG_BACKUPS = 5
LOG_FILENAME = "monitor.jsonl"
DEFAULT_COMPONENT = "monitor"

# Component shown in log lines, e.g. the repository being ingested.
component: contextvars.ContextVar[str] = contextvars.ContextVar(
    "component", default=DEFAULT_COMPONENT
)


class _ComponentFormatter(logging.Formatter):
    """Log formatter that injects the component ContextVar into each record."""

    def format(self, record: logging.LogRecord) -> str:
        record.component = component.get(DEFAULT_COMPONENT)  # type: ignore[attr-defined]
        return super().format(record)


class _JsonFormatter(logging.Formatter):
    """Structured JSON formatter for logfile events."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "ts": datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "component": getattr(record, "component", component.get(DEFAULT_COMPONENT)),
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"))


def resolve_log_dir() -> Path:
    override = os.environ.get(LOG_DIR_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return default_user_config_dir() / "logs"


def _read_positive_int_env(name: str, default: int, minimum: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if value < minimum:
        return default
    return value


def configure_logging(level: int = logging.INFO) -> logging.Logger:
    """Attach stream and rotating JSONL handlers to the ``pr_monitor`` logger once."""
    logger = logging.getLogger("pr_monitor")
    logger.setLevel(level)
    logger.propagate = False

    if not any(getattr(handler, "_pr_monitor_stream_handler", False) for handler in logger.handlers):
        # stderr: the MCP stdio transport owns stdout.
        handler = logging.StreamHandler()
        handler._pr_monitor_stream_handler = True  # type: ignore[attr-defined]
        handler.setLevel(level)
        handler.setFormatter(
            _ComponentFormatter(
                "%(asctime)s [%(component)s] %(message)s",
                "%H:%M:%S",
            )
        )
        logger.addHandler(handler)

    if not any(getattr(handler, "_pr_monitor_file_handler", False) for handler in logger.handlers):
        log_dir = resolve_log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / LOG_FILENAME,
            maxBytes=_read_positive_int_env(LOG_MAX_BYTES_ENV_VAR, DEFAULT_LOG_MAX_BYTES, 1024),
            backupCount=_read_positive_int_env(LOG_BACKUPS_ENV_VAR, DEFAULT_LOG_BACKUPS, 1),
            encoding="utf-8",
        )
        file_handler._pr_monitor_file_handler = True  # type: ignore[attr-defined]
        file_handler.setLevel(level)
        file_handler.setFormatter(_JsonFormatter())
        logger.addHandler(file_handler)

    return logger
