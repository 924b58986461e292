# src/core/errors.py
"""Error taxonomy for event handling.

Validation and cost errors are resolved at their own layer. Upstream call
errors are classified once, by the retry executor, and that classification
is what the rest of the pipeline sees.
"""

from typing import Any


class ThreadlineError(Exception):
    """Base exception for the event core."""


class ValidationFailed(ThreadlineError):
    """User input failed one or more field constraints."""

    def __init__(self, errors: dict[str, str]):
        super().__init__(f"{len(errors)} field(s) failed validation")
        self.errors = errors


class CostRejected(ThreadlineError):
    """Estimated cost is above the configured ceiling."""

    def __init__(self, estimate: Any, ceiling: Any):
        super().__init__(f"Estimated cost {estimate.cost} exceeds ceiling {ceiling}")
        self.estimate = estimate
        self.ceiling = ceiling


class UnknownModel(ThreadlineError):
    """Model identifier has no entry in the price table."""

    def __init__(self, model_id: str):
        super().__init__(f"No pricing configured for model {model_id!r}")
        self.model_id = model_id


class UpstreamError(ThreadlineError):
    """Failure returned by the model provider or another upstream API.

    Attributes:
        status_code: HTTP-like status, or None for transport-level failures.
        attempts: Number of attempts made before this error surfaced.
    """

    def __init__(
        self, message: str, status_code: int | None = None, attempts: int = 1
    ):
        super().__init__(message)
        self.status_code = status_code
        self.attempts = attempts


class RetryableUpstreamError(UpstreamError):
    """Transient upstream failure (5xx, 429, timeouts) that exhausted retries."""


class FatalUpstreamError(UpstreamError):
    """Non-retryable upstream failure (4xx other than 429, bad configuration)."""


class TriggerExpired(ThreadlineError):
    """An interactive trigger id was used after its validity window."""

    def __init__(self, trigger_id: str, age: float):
        super().__init__(f"Trigger {trigger_id} expired ({age:.2f}s old)")
        self.trigger_id = trigger_id
        self.age = age


class AcknowledgmentError(ThreadlineError):
    """Raised when an event would be acknowledged more than once."""


class ShutdownInterrupted(ThreadlineError):
    """A backoff wait was interrupted by process shutdown."""
