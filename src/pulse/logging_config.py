"""Structured logging configuration for Linear Pulse.

- JSON structured logging with StructuredFormatter
- Logger hierarchy under the ``pulse`` namespace
- Environment variable control (PULSE_LOG_LEVEL, PULSE_LOG_FORMAT)
"""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Optional


# Sensitive keys that should be redacted in log output
SENSITIVE_KEYS = {
    "password", "token", "secret", "apikey", "api_key",
    "authorization", "credential", "auth", "key", "bearer",
}

_STANDARD_FIELDS = {
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "thread",
    "threadName",
    "exc_info",
    "exc_text",
    "stack_info",
    "taskName",
}


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter.

    Outputs logs in JSON format with:
    - timestamp: UTC ISO 8601 format with 'Z' suffix
    - level: Log level name (INFO, ERROR, etc.)
    - logger: Logger name (pulse hierarchy)
    - message: Log message (usually a snake_case event name)
    - context: Extras dict merged from LogRecord attributes
    - exception: Formatted traceback when exc_info is set

    Security: Sensitive keys (token, api_key, authorization, etc.) are
    redacted to prevent credential leakage in logs.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: LogRecord to format

        Returns:
            JSON string with structured log data
        """
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
    """Human-readable text formatter for development.

    Used when PULSE_LOG_FORMAT=text for easier local debugging.
    """

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def configure_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Configure structured logging for all pulse loggers.

    Args:
        level: Optional log level override. If not provided, uses PULSE_LOG_LEVEL
               environment variable (default: INFO).
        log_format: Optional format override (json or text). If not provided,
               uses PULSE_LOG_FORMAT (default: json).

    Environment Variables:
        PULSE_LOG_LEVEL: Log level (DEBUG, INFO, WARNING, ERROR). Default: INFO
        PULSE_LOG_FORMAT: Output format (json, text). Default: json
    """
    if level is None:
        level = os.getenv("PULSE_LOG_LEVEL", "INFO")

    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format is None:
        log_format = os.getenv("PULSE_LOG_FORMAT", "json")

    if log_format.lower() == "text":
        formatter = TextFormatter()
    else:
        formatter = StructuredFormatter()

    logger = logging.getLogger("pulse")
    logger.setLevel(log_level)

    # Idempotent: only add a handler on first call
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.propagate = False
