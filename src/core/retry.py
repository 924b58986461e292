# src/core/retry.py
"""Bounded retry with exponential backoff for upstream calls.

This is the only place retry and backoff policy is decided. Callers hand an
async operation to RetryExecutor.execute() and get back either the value or
a classified UpstreamError; they never loop themselves.

Backoff before the nth retry is ``min(initial * 2 ** (n - 1), max_backoff)``.
Status 429 and 5xx are retried, other 4xx stop immediately.

Example:
    >>> executor = RetryExecutor(RetryPolicy(max_attempts=3))
    >>> result = await executor.execute(lambda: client.generate(prompt, model))
    >>> result.value, result.attempts
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

import httpx
import tenacity

from src.core.errors import (
    FatalUpstreamError,
    RetryableUpstreamError,
    ShutdownInterrupted,
    UnknownModel,
    UpstreamError,
)
from src.utils.logging import log_operation

logger = logging.getLogger(__name__)

T = TypeVar("T")

RATE_LIMIT_STATUS = 429
BACKOFF_MULTIPLIER = 2


# ============================================================================
# Policy
# ============================================================================


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration.

    Attributes:
        max_attempts: Total attempts including the first (>= 1).
        initial_backoff: Wait in seconds before the first retry.
        max_backoff: Upper bound for any single wait.
        multiplier: Growth factor between waits.
    """

    max_attempts: int = 3
    initial_backoff: float = 1.0
    max_backoff: float = 30.0
    multiplier: int = BACKOFF_MULTIPLIER

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_backoff < 0 or self.max_backoff < 0:
            raise ValueError("backoff durations must be non-negative")
        if self.initial_backoff > self.max_backoff:
            raise ValueError("initial_backoff must not exceed max_backoff")

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            initial_backoff=settings.retry_initial_backoff,
            max_backoff=settings.retry_max_backoff,
        )

    def backoff_for(self, retry_number: int) -> float:
        """Wait before the nth retry (1-based)."""
        if retry_number < 1:
            raise ValueError("retry_number must be >= 1")
        return min(
            self.initial_backoff * self.multiplier ** (retry_number - 1),
            self.max_backoff,
        )


# ============================================================================
# Error classification
# ============================================================================


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    RETRYABLE = "retryable"
    FATAL = "fatal"


@dataclass(frozen=True)
class AttemptOutcome:
    """Result of one attempt: success(value), retryable(error) or fatal(error)."""

    kind: OutcomeKind
    value: Any = None
    error: BaseException | None = None
    status_code: int | None = None

    @classmethod
    def success(cls, value: Any) -> "AttemptOutcome":
        return cls(OutcomeKind.SUCCESS, value=value)

    @property
    def is_retryable(self) -> bool:
        return self.kind is OutcomeKind.RETRYABLE


def status_code_of(error: BaseException) -> int | None:
    """Read an HTTP-like status code from an upstream error, if it has one."""
    status = getattr(error, "status_code", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def classify_error(error: BaseException) -> AttemptOutcome:
    """Decide whether a failed attempt may be retried.

    Args:
        error: Exception raised by the attempt.

    Returns:
        AttemptOutcome with kind RETRYABLE or FATAL.
    """
    if isinstance(error, (asyncio.CancelledError, ShutdownInterrupted, UnknownModel)):
        return AttemptOutcome(OutcomeKind.FATAL, error=error)

    status = status_code_of(error)
    if status is not None:
        if status == RATE_LIMIT_STATUS or status >= 500:
            return AttemptOutcome(OutcomeKind.RETRYABLE, error=error, status_code=status)
        return AttemptOutcome(OutcomeKind.FATAL, error=error, status_code=status)

    if isinstance(error, RetryableUpstreamError):
        return AttemptOutcome(OutcomeKind.RETRYABLE, error=error)
    if isinstance(
        error, (httpx.TimeoutException, httpx.TransportError, TimeoutError, ConnectionError)
    ):
        return AttemptOutcome(OutcomeKind.RETRYABLE, error=error)
    return AttemptOutcome(OutcomeKind.FATAL, error=error)


def attempt_outcome(retry_state: tenacity.RetryCallState) -> AttemptOutcome:
    """Tag the attempt tenacity just finished as success, retryable or fatal."""
    outcome = retry_state.outcome
    if outcome is None or not outcome.failed:
        return AttemptOutcome.success(outcome.result() if outcome else None)
    return classify_error(outcome.exception())


# ============================================================================
# Executor
# ============================================================================


@dataclass(frozen=True)
class RetryResult(Generic[T]):
    """Successful value plus the attempt number that produced it."""

    value: T
    attempts: int


class RetryExecutor:
    """Runs async operations under a RetryPolicy using tenacity.

    Backoff waits are cooperative (asyncio) so other events keep being
    handled. request_shutdown() interrupts any pending wait with
    ShutdownInterrupted.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            policy: Retry policy to apply to every call.
            sleep: Optional sleep override (tests record waits with this).
        """
        self.policy = policy
        self._shutdown = asyncio.Event()
        self._sleep_override = sleep

    def request_shutdown(self) -> None:
        """Interrupt pending and future backoff waits."""
        self._shutdown.set()

    def shutdown(self) -> None:
        """Lifecycle hook."""
        self.request_shutdown()

    @property
    def is_shutting_down(self) -> bool:
        return self._shutdown.is_set()

    async def _sleep(self, seconds: float) -> None:
        if self._shutdown.is_set():
            raise ShutdownInterrupted("shutdown requested before backoff")
        if self._sleep_override is not None:
            await self._sleep_override(seconds)
            return
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise ShutdownInterrupted(f"shutdown requested during {seconds:.2f}s backoff")

    def _wait(self) -> tenacity.wait.wait_base:
        return tenacity.wait_exponential(
            multiplier=self.policy.initial_backoff,
            exp_base=self.policy.multiplier,
            min=0,
            max=self.policy.max_backoff,
        )

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        context: Any = None,
        name: str = "upstream-call",
    ) -> RetryResult[T]:
        """Run ``operation`` until it succeeds, fails fatally, or attempts run out.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt.
            context: CorrelationContext for retry log entries.
            name: Label for the operation in logs.

        Returns:
            RetryResult with the value and the attempt count.

        Raises:
            RetryableUpstreamError: Transient failures exhausted max_attempts.
            FatalUpstreamError: A non-retryable failure occurred.
            ShutdownInterrupted: Shutdown was requested during a backoff wait.
        """

        def _before_sleep(retry_state: tenacity.RetryCallState) -> None:
            outcome = attempt_outcome(retry_state)
            error = outcome.error
            wait = retry_state.next_action.sleep if retry_state.next_action else 0.0
            status = outcome.status_code
            fields: dict[str, Any] = {
                "target": name,
                "retry_attempt": retry_state.attempt_number,
                "wait_seconds": round(wait, 3),
                "status_code": status,
                "error_type": type(error).__name__ if error else None,
            }
            if status == RATE_LIMIT_STATUS:
                fields["rate_limit_wait"] = round(wait, 3)
            log_operation(logger, "retry", context, level=logging.WARNING, **fields)

        retrying = tenacity.AsyncRetrying(
            stop=tenacity.stop_after_attempt(self.policy.max_attempts),
            wait=self._wait(),
            retry=lambda retry_state: attempt_outcome(retry_state).is_retryable,
            before_sleep=_before_sleep,
            sleep=self._sleep,
            reraise=True,
        )

        attempts = 0
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    value = await operation()
        except ShutdownInterrupted:
            raise
        except Exception as e:
            outcome = classify_error(e)
            error_cls = RetryableUpstreamError if outcome.is_retryable else FatalUpstreamError
            raise error_cls(
                f"{name} failed after {attempts} attempt(s): {type(e).__name__}",
                status_code=outcome.status_code,
                attempts=attempts,
            ) from e
        return RetryResult(value=value, attempts=attempts)
