# src/utils/logging.py
"""Structured logging with JSON format and correlation ID support.

Provides:
- JSON-formatted log output for structured logging
- Request correlation ID via ContextVar for async-safe tracking
- log_operation() for the flat per-operation log entries
- Centralized logger configuration
"""

import json
import logging
from contextvars import ContextVar
from typing import Any

# Request correlation ID for tracking requests across async contexts
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

LOG_TEXT_LIMIT = 200


def set_request_id(request_id: str) -> None:
    """Set the request correlation ID for the current context.

    Args:
        request_id: Unique identifier for the request.
    """
    request_id_var.set(request_id)


def get_request_id() -> str:
    """Get the request correlation ID for the current context.

    Returns:
        Current request ID, or empty string if not set.
    """
    return request_id_var.get()


def truncate_for_log(text: str | None, limit: int = LOG_TEXT_LIMIT) -> str:
    """Shorten user text before it goes into a log entry."""
    if not text:
        return ""
    return text if len(text) <= limit else text[:limit] + "..."


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Outputs log records as JSON with timestamp, level, logger name,
    message, optional correlation_id, and any structured fields passed
    through ``extra={"fields": {...}}``.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON.

        Args:
            record: Log record to format.

        Returns:
            JSON-formatted log string.
        """
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = get_request_id()
        if request_id:
            log_data["correlation_id"] = request_id

        fields = getattr(record, "fields", None)
        if isinstance(fields, dict):
            for key, value in fields.items():
                log_data.setdefault(key, value)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def log_operation(
    logger: logging.Logger,
    operation: str,
    context: Any = None,
    level: int = logging.INFO,
    message: str | None = None,
    exc_info: bool = False,
    **fields: Any,
) -> dict[str, Any]:
    """Emit one flat structured log entry for an operation.

    Context fields (correlation id, channel, timestamps) are merged with the
    caller's fields; the context always wins on key collisions so one id
    traces the event end to end.

    Args:
        logger: Logger to emit on.
        operation: Operation name (respond-to-message, tool-call, retry, ...).
        context: Optional CorrelationContext for the event being handled.
        level: Logging level.
        message: Human readable message; defaults to the operation name.
        exc_info: Attach the current exception to the record.
        **fields: Operation-specific fields (model, tokens, latency_ms, ...).

    Returns:
        The flat mapping that was logged.
    """
    entry: dict[str, Any] = {"operation": operation}
    if context is not None:
        entry.update(context.merge(**fields))
    else:
        entry.update(fields)
    logger.log(level, message or operation, extra={"fields": entry}, exc_info=exc_info)
    return entry


def configure_structured_logging(
    level: int | str = logging.INFO, json_output: bool = True
) -> None:
    """Configure structured JSON logging for the application.

    Sets up a StreamHandler with StructuredFormatter and applies
    it to the root logger.

    Args:
        level: Logging level (default: logging.INFO).
        json_output: Use JSON output; plain text formatter otherwise.
    """
    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    logging.root.addHandler(handler)
    logging.root.setLevel(level)

    # Quiet noisy SDK loggers
    for noisy in ("slack_bolt", "slack_sdk", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
