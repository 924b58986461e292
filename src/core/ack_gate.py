# src/core/ack_gate.py
"""Acknowledge-before-work gate for Slack events.

Slack requires every event, command and interaction to be acknowledged
within 3 seconds. The gate makes the ack the first thing that happens and
sequences all slow work (model calls, external I/O) after it. Once sent, an
ack is final: failures in later processing are reported to the user with a
follow-up message, never by failing the ack.

Late acks are logged as warnings. The gate does not cancel slow handlers;
deadline breaches are an operational concern tracked from the logs.
"""

import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from src.core.correlation import CorrelationContext, bind
from src.core.errors import AcknowledgmentError
from src.core.events import Event, EventKind
from src.utils.logging import log_operation

logger = logging.getLogger(__name__)

DEFAULT_ACK_DEADLINE = 3.0
GENERIC_FAILURE_TEXT = ":warning: Something went wrong while handling your request. Please try again."

RETRY_NUM_HEADER = "x-slack-retry-num"


@dataclass(frozen=True)
class ResponseHandle:
    """Where follow-up messages for an acknowledged event are sent.

    Attributes:
        channel: Channel ID to post into.
        thread_ts: Thread to reply in.
        response_url: Slack response_url, set for slash commands only.
        user: User to address ephemeral notices to.
    """

    channel: str | None = None
    thread_ts: str | None = None
    response_url: str | None = None
    user: str | None = None

    @classmethod
    def capture(cls, event: Event, context: CorrelationContext) -> "ResponseHandle":
        # Only commands answer through response_url; everything else replies in thread.
        response_url = None
        if event.kind is EventKind.COMMAND:
            response_url = event.payload.get("response_url")
        return cls(
            channel=context.channel,
            thread_ts=context.thread_ts,
            response_url=response_url,
            user=context.user,
        )


class FailureNotifier(Protocol):
    async def notify_failure(self, handle: ResponseHandle, text: str) -> None: ...


class Acknowledgment:
    """Exactly-once wrapper around the platform ack callable."""

    def __init__(
        self,
        ack: Callable[..., Awaitable[Any]],
        event: Event,
        context: CorrelationContext,
        deadline_seconds: float = DEFAULT_ACK_DEADLINE,
    ) -> None:
        self._ack = ack
        self._event = event
        self._context = context
        self._deadline = deadline_seconds
        self.acked_at: float | None = None
        self.payload: dict[str, Any] | None = None

    @property
    def sent(self) -> bool:
        return self.acked_at is not None

    async def send(self, **payload: Any) -> None:
        """Send the acknowledgment, optionally with a payload.

        Raises:
            AcknowledgmentError: If this event was already acknowledged.
        """
        if self.sent:
            raise AcknowledgmentError(
                f"Event {self._context.correlation_id} already acknowledged"
            )
        # Mark first so a failing ack call is never retried by us.
        self.acked_at = time.time()
        self.payload = payload
        await self._ack(**payload)

        latency = self.acked_at - self._event.received_at
        late = latency > self._deadline
        log_operation(
            logger,
            "ack",
            self._context,
            level=logging.WARNING if late else logging.DEBUG,
            message="Acknowledgment sent after deadline" if late else "Acknowledged",
            ack_latency_ms=round(latency * 1000, 2),
            deadline_ms=round(self._deadline * 1000),
            with_payload=bool(payload),
        )


def is_redelivery(headers: Mapping[str, Any] | None) -> bool:
    """Check whether Slack marked this delivery as a retry.

    Bolt passes headers as lists of values keyed by lower-case name.
    """
    if not headers:
        return False
    for key, value in headers.items():
        if key.lower() != RETRY_NUM_HEADER:
            continue
        if isinstance(value, (list, tuple)):
            value = value[0] if value else None
        try:
            return int(value) > 0
        except (TypeError, ValueError):
            return False
    return False


class AckGate:
    """Sequences ack -> slow work for one event at a time."""

    def __init__(
        self,
        notifier: FailureNotifier,
        deadline_seconds: float = DEFAULT_ACK_DEADLINE,
        failure_text: str = GENERIC_FAILURE_TEXT,
    ) -> None:
        self._notifier = notifier
        self.deadline_seconds = deadline_seconds
        self._failure_text = failure_text

    def acknowledgment(
        self, ack: Callable[..., Awaitable[Any]], event: Event, context: CorrelationContext
    ) -> Acknowledgment:
        return Acknowledgment(ack, event, context, self.deadline_seconds)

    async def handle(
        self,
        event: Event,
        context: CorrelationContext,
        ack: Callable[..., Awaitable[Any]],
        work: Callable[[ResponseHandle], Awaitable[Any]],
        **ack_payload: Any,
    ) -> Any:
        """Acknowledge, then run the slow path.

        Args:
            event: The inbound event.
            context: Correlation context for the event.
            ack: Platform ack callable.
            work: Slow path, receives the ResponseHandle captured at ack time.
            **ack_payload: Minimal payload for the ack (usually none).

        Returns:
            Whatever ``work`` returns, or None if it failed.
        """
        with bind(context):
            acknowledgment = self.acknowledgment(ack, event, context)
            await acknowledgment.send(**ack_payload)
            return await self.process(event, context, work)

    async def process(
        self,
        event: Event,
        context: CorrelationContext,
        work: Callable[[ResponseHandle], Awaitable[Any]],
        handle: ResponseHandle | None = None,
    ) -> Any:
        """Run the slow path for an already-acknowledged event.

        Any failure is logged with the correlation id and
        reported to the user through a follow-up message.
        ``handle`` overrides the follow-up target captured from the event.
        """
        handle = handle or ResponseHandle.capture(event, context)
        with bind(context):
            try:
                return await work(handle)
            except Exception as e:
                log_operation(
                    logger,
                    "respond-to-message",
                    context,
                    level=logging.ERROR,
                    message="Unhandled error after acknowledgment",
                    exc_info=True,
                    error_type=type(e).__name__,
                )
                try:
                    await self._notifier.notify_failure(handle, self._failure_text)
                except Exception:
                    logger.warning("Failed to send failure notice", exc_info=True)
                return None
