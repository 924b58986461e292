"""Logging and observability helpers."""

from src.utils.logging import (
    configure_structured_logging,
    get_request_id,
    log_operation,
    set_request_id,
    truncate_for_log,
)
from src.utils.observability import setup_logfire

__all__ = [
    "configure_structured_logging",
    "get_request_id",
    "log_operation",
    "set_request_id",
    "setup_logfire",
    "truncate_for_log",
]
