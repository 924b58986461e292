# src/core/events.py
"""Inbound event model.

An Event is one decoded, already-verified occurrence from Slack. It is
immutable once built; handlers read it but never change it.
"""

import re
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from src.core.errors import TriggerExpired

DEFAULT_TRIGGER_VALIDITY = 3.0

_MENTION_PATTERN = re.compile(r"<@[A-Z0-9]+>")


class EventKind(str, Enum):
    """Kinds of inbound events the bot handles."""

    MENTION = "mention"
    DIRECT_MESSAGE = "direct_message"
    COMMAND = "command"
    ACTION = "action"
    SHORTCUT = "shortcut"
    VIEW_SUBMISSION = "view_submission"


@dataclass(frozen=True)
class TriggerToken:
    """Short-lived trigger id with an explicit deadline.

    Attributes:
        value: The trigger id string from the interaction payload.
        issued_at: Epoch seconds when the interaction was received.
        validity: Seconds the trigger id stays usable.
    """

    value: str
    issued_at: float
    validity: float = DEFAULT_TRIGGER_VALIDITY

    @property
    def deadline(self) -> float:
        return self.issued_at + self.validity

    def is_expired(self, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        return now > self.deadline

    def ensure_valid(self, now: float | None = None) -> str:
        """Return the trigger id, or raise TriggerExpired past the deadline."""
        now = time.time() if now is None else now
        if self.is_expired(now):
            raise TriggerExpired(self.value, now - self.issued_at)
        return self.value


def _freeze(payload: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(payload))


@dataclass(frozen=True)
class Event:
    """One inbound occurrence from the chat platform.

    Attributes:
        kind: What kind of event this is.
        payload: Raw decoded payload (read-only view).
        received_at: Epoch seconds when the event reached the bot.
        thread_ts: Parent thread timestamp, if the event is in a thread.
        trigger: Time-boxed trigger id for interactive flows.
    """

    kind: EventKind
    payload: Mapping[str, Any] = field(default_factory=dict)
    received_at: float = field(default_factory=time.time)
    thread_ts: str | None = None
    trigger: TriggerToken | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.payload, MappingProxyType):
            object.__setattr__(self, "payload", _freeze(self.payload))

    @property
    def text(self) -> str:
        """User text with @mention markup removed."""
        raw = self.payload.get("text") or ""
        cleaned = _MENTION_PATTERN.sub("", raw).strip()
        return cleaned if cleaned else raw

    @classmethod
    def from_message(
        cls, event: Mapping[str, Any], kind: EventKind = EventKind.MENTION
    ) -> "Event":
        """Build from an Events API message/app_mention payload."""
        return cls(kind=kind, payload=event, thread_ts=event.get("thread_ts"))

    @classmethod
    def from_command(
        cls,
        command: Mapping[str, Any],
        trigger_validity: float = DEFAULT_TRIGGER_VALIDITY,
    ) -> "Event":
        """Build from a slash command payload."""
        received_at = time.time()
        trigger = None
        if command.get("trigger_id"):
            trigger = TriggerToken(command["trigger_id"], received_at, trigger_validity)
        return cls(
            kind=EventKind.COMMAND,
            payload=command,
            received_at=received_at,
            trigger=trigger,
        )

    @classmethod
    def from_interaction(
        cls,
        kind: EventKind,
        body: Mapping[str, Any],
        trigger_validity: float = DEFAULT_TRIGGER_VALIDITY,
    ) -> "Event":
        """Build from a block action, shortcut or view submission body."""
        received_at = time.time()
        trigger = None
        if body.get("trigger_id"):
            trigger = TriggerToken(body["trigger_id"], received_at, trigger_validity)
        message = body.get("message") or {}
        return cls(
            kind=kind,
            payload=body,
            received_at=received_at,
            thread_ts=message.get("thread_ts") or message.get("ts"),
            trigger=trigger,
        )
