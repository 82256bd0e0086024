"""Structured JSON logging.

Provides:
- JSON-formatted logs for log aggregation systems (ELK, Loki, etc.)
- Request and account context propagated through contextvars
- Configurable log levels and formats

Usage:
    from pushstore.observability.logging import configure_logging

    # In application startup
    configure_logging(json_format=True, level="INFO")

    # Context is automatically included in logs
    logger = logging.getLogger(__name__)
    with LogContext(request_id="abc", account_id="42"):
        logger.info("Committing package")
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

# Context variables for request correlation
request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="")
account_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("account_id", default="")
operation_var: contextvars.ContextVar[str] = contextvars.ContextVar("operation", default="")

_CONTEXT_VARS: dict[str, contextvars.ContextVar[str]] = {
    "request_id": request_id_var,
    "account_id": account_id_var,
    "operation": operation_var,
}

# Standard LogRecord attributes, never copied as extra fields
_STANDARD_ATTRS = {
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
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "exc_info",
    "exc_text",
    "thread",
    "threadName",
    "taskName",
    "message",
}


class JsonFormatter(logging.Formatter):
    """JSON log formatter with request context.

    Output format:
    {
        "timestamp": "2026-01-10T12:34:56.789Z",
        "level": "INFO",
        "logger": "pushstore.releases",
        "message": "Committed v3 to deployment 5f0c...",
        "module": "releases",
        "function": "commit_package",
        "line": 42,
        "request_id": "abc-123",
        "account_id": "9d1e...",
        "operation": "commit_package"
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for key, var in _CONTEXT_VARS.items():
            value = var.get()
            if value:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                try:
                    json.dumps(value)  # Verify it's JSON serializable
                    log_data[key] = value
                except (TypeError, ValueError):
                    log_data[key] = str(value)

        return json.dumps(log_data, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for development.

    Output format:
    2026-01-10 12:34:56 | INFO | pushstore.releases | Committed v3 | req=abc-123 op=commit_package
    """

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True) -> None:
        super().__init__()
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for console output."""
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        level = record.levelname

        if self.use_colors:
            color = self.COLORS.get(level, "")
            level = f"{color}{level}{self.RESET}"

        message = record.getMessage()

        context_parts = []
        request_id = request_id_var.get()
        if request_id:
            context_parts.append(f"req={request_id[:8]}")
        operation = operation_var.get()
        if operation:
            context_parts.append(f"op={operation}")

        context = f" | {' '.join(context_parts)}" if context_parts else ""

        result = f"{timestamp} | {level:8} | {record.name} | {message}{context}"

        if record.exc_info:
            result += "\n" + self.formatException(record.exc_info)

        return result


def configure_logging(
    json_format: bool = True,
    level: str = "INFO",
    use_colors: bool = True,
) -> None:
    """Configure application-wide logging.

    Args:
        json_format: Use JSON format (recommended for production)
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_colors: Use ANSI colors in console format
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)

    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(ConsoleFormatter(use_colors=use_colors))

    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)
    logging.getLogger("azure").setLevel(logging.WARNING)


class LogContext:
    """Context manager for adding temporary log context.

    Usage:
        with LogContext(request_id="abc", operation="promote"):
            logger.info("Promoting")  # Includes request_id and operation
    """

    def __init__(self, **kwargs: Any) -> None:
        self.extra = kwargs
        self._tokens: dict[str, contextvars.Token[str]] = {}

    def __enter__(self) -> LogContext:
        for key, var in _CONTEXT_VARS.items():
            if self.extra.get(key):
                self._tokens[key] = var.set(str(self.extra[key]))
        return self

    def __exit__(self, *args: Any) -> None:
        for key, token in self._tokens.items():
            _CONTEXT_VARS[key].reset(token)
        self._tokens.clear()
