# src/core/correlation.py
"""Per-event correlation context.

A CorrelationContext is created once when an event arrives and passed by
reference to every call made while handling it. Log entries merge their
own fields with the context fields so a single correlation id traces the
event end to end.
"""

import uuid
from collections.abc import Generator, Mapping
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Any

from src.core.events import Event
from src.utils.logging import get_request_id, set_request_id


@dataclass(frozen=True)
class CorrelationContext:
    """Identity and trace fields for one event.

    Attributes:
        correlation_id: Unique id for this event, used on every log entry.
        event_ts: Trace timestamp of the event.
        thread_ts: Thread timestamp replies should go to.
        channel: Channel the event came from.
        user: User who triggered the event.
        event_kind: Kind of the originating event.
    """

    correlation_id: str
    event_ts: str | None = None
    thread_ts: str | None = None
    channel: str | None = None
    user: str | None = None
    event_kind: str | None = None

    def as_log_fields(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    def merge(self, **fields: Any) -> dict[str, Any]:
        """Merge caller fields with context fields; context keys win."""
        merged = dict(fields)
        merged.update(self.as_log_fields())
        return merged


def new_correlation_id() -> str:
    return f"evt_{uuid.uuid4().hex}"


def _first(*values: Any) -> Any:
    for value in values:
        if value not in (None, ""):
            return value
    return None


def _trace_timestamp(payload: Mapping[str, Any], event: Event) -> str:
    """First timestamp present: action item, then message, then event.

    For block_actions the action item timestamp is `actions[0].action_ts`;
    `container.message_ts` is the timestamp of the message holding the
    button, so it ranks with the message timestamps.
    """
    actions = payload.get("actions") or [{}]
    container = payload.get("container") or {}
    item = payload.get("item") or {}
    message = payload.get("message") or {}
    return _first(
        actions[0].get("action_ts"),
        item.get("ts"),
        container.get("message_ts"),
        message.get("ts"),
        payload.get("ts"),
        payload.get("event_ts"),
        f"{event.received_at:.6f}",
    )


def _channel(payload: Mapping[str, Any]) -> str | None:
    channel = payload.get("channel")
    if isinstance(channel, Mapping):
        channel = channel.get("id")
    container = payload.get("container") or {}
    item = payload.get("item") or {}
    return _first(
        channel,
        payload.get("channel_id"),
        container.get("channel_id"),
        item.get("channel"),
    )


def _user(payload: Mapping[str, Any]) -> str | None:
    user = payload.get("user")
    if isinstance(user, Mapping):
        user = user.get("id")
    return _first(user, payload.get("user_id"))


def create_context(event: Event) -> CorrelationContext:
    """Derive the correlation context for an event.

    Args:
        event: The inbound event.

    Returns:
        A new CorrelationContext with a fresh correlation id.
    """
    payload = event.payload
    event_ts = _trace_timestamp(payload, event)
    message = payload.get("message") or {}
    thread_ts = _first(
        event.thread_ts,
        payload.get("thread_ts"),
        message.get("thread_ts"),
        event_ts,
    )
    return CorrelationContext(
        correlation_id=new_correlation_id(),
        event_ts=event_ts,
        thread_ts=thread_ts,
        channel=_channel(payload),
        user=_user(payload),
        event_kind=event.kind.value,
    )


@contextmanager
def bind(context: CorrelationContext) -> Generator[CorrelationContext, None, None]:
    """Bind the correlation id to the logging ContextVar while handling.

    Restores the previous id on exit so concurrent tasks never see each
    other's ids.
    """
    previous = get_request_id()
    set_request_id(context.correlation_id)
    try:
        yield context
    finally:
        set_request_id(previous)
