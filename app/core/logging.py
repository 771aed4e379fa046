"""Structured logging configuration for the Context Engine."""

import logging
import sys
from typing import Any

# Attributes every LogRecord has; anything else arrived through ``extra=``
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

# Context fields rendered right after the message, in this order
_LEADING_FIELDS = ("user_id", "operation", "duration_ms")


class StructuredFormatter(logging.Formatter):
    """key=value structured log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured output."""
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "module": record.module,
            "function": record.funcName,
            "message": record.getMessage(),
        }

        extras = {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS}
        nested = extras.pop("extra_data", None)

        for key in _LEADING_FIELDS:
            if key in extras:
                log_data[key] = extras.pop(key)
        log_data.update(extras)
        if isinstance(nested, dict):
            log_data.update(nested)

        line = " ".join(f"{k}={v}" for k, v in log_data.items())
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Only configure if not already configured
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)

        # Set level based on environment
        try:
            from app.core.config import get_settings

            settings = get_settings()
            if settings.CONTEXT_ENGINE_ENV == "dev":
                logger.setLevel(logging.DEBUG)
            else:
                logger.setLevel(logging.INFO)
        except Exception:
            # Settings may be unavailable in scripts run without an .env
            logger.setLevel(logging.INFO)

    return logger


def log_with_context(logger: logging.Logger, level: int, msg: str, **kwargs: Any) -> None:
    """
    Log with additional context fields.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, etc.)
        msg: Log message
        **kwargs: Context fields (user_id is rendered first)
    """
    extra: dict[str, Any] = {"extra_data": kwargs}
    if "user_id" in kwargs:
        extra["user_id"] = kwargs.pop("user_id")

    logger.log(level, msg, extra=extra)
