"""Structured logging configuration for ji-mirror.

- JSON structured logging with StructuredFormatter
- Logger hierarchy under the ji_mirror namespace
- Environment variable control (JI_LOG_LEVEL, JI_LOG_FORMAT)

Log calls across the package use event-style messages ("sync_scope_start")
with the details passed through ``extra={...}``.
"""

import json
import logging
import os
from datetime import datetime, timezone

# Extras whose values are replaced before output
SENSITIVE_KEYS = {
    "password", "token", "api_token", "secret", "apikey", "api_key",
    "authorization", "credential", "credentials", "auth", "bearer",
}

_STANDARD_FIELDS = frozenset(
    {
        "name", "msg", "args", "created", "filename", "funcName", "levelname",
        "levelno", "lineno", "module", "msecs", "message", "pathname", "process",
        "processName", "relativeCreated", "thread", "threadName", "exc_info",
        "exc_text", "stack_info", "taskName",
    }
)

ROOT_LOGGER = "ji_mirror"


class StructuredFormatter(logging.Formatter):
    """JSON log formatter.

    Outputs one JSON object per line with timestamp (UTC, 'Z' suffix), level,
    logger, message and a ``context`` dict built from the record's extras.
    Sensitive extras are redacted. Exceptions are rendered under ``exception``.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extras = {
            k: ("[REDACTED]" if k.lower() in SENSITIVE_KEYS else v)
            for k, v in record.__dict__.items()
            if k not in _STANDARD_FIELDS and not k.startswith("_")
        }
        if extras:
            log_data["context"] = extras

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter, used when JI_LOG_FORMAT=text."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def configure_logging(level: str | None = None, log_format: str | None = None) -> None:
    """Configure the ji_mirror logger hierarchy.

    Args:
        level: Log level override. Defaults to JI_LOG_LEVEL (INFO).
        log_format: "json" or "text". Defaults to JI_LOG_FORMAT (json).
    """
    if level is None:
        level = os.getenv("JI_LOG_LEVEL", "INFO")
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format is None:
        log_format = os.getenv("JI_LOG_FORMAT", "json")
    formatter = TextFormatter() if log_format.lower() == "text" else StructuredFormatter()

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(log_level)

    # Idempotent: one handler, formatter refreshed on reconfigure
    if not logger.handlers:
        handler = logging.StreamHandler()
        logger.addHandler(handler)
    for handler in logger.handlers:
        handler.setFormatter(formatter)

    logger.propagate = False
