# src/core/modal.py
"""Validate-then-acknowledge pipeline for modal submissions.

A view submission goes through two states: VALIDATE, then one terminal
state. If any field fails its rule the submission is REJECTED and the ack
itself carries the inline errors (``response_action="errors"``). Otherwise
it is ACCEPTED: a plain ack is sent and the values are processed after it.
A failure while processing reaches the user as a generic follow-up notice.

Validation always decides before any ack is sent. Once a plain ack has gone
out Slack can no longer show inline errors.
"""

import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from src.core.ack_gate import (
    DEFAULT_ACK_DEADLINE,
    AckGate,
    Acknowledgment,
    FailureNotifier,
    ResponseHandle,
)
from src.core.correlation import CorrelationContext, bind
from src.core.errors import AcknowledgmentError, ValidationFailed
from src.core.events import DEFAULT_TRIGGER_VALIDITY, Event, TriggerToken
from src.utils.logging import log_operation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldRule:
    """Constraint for one input block of a modal.

    Attributes:
        block_id: Block id the error is reported against.
        action_id: Action id of the input element inside the block.
        label: Human readable field name used in error messages.
        min_length: Minimum length of the stripped value.
        max_length: Maximum length, or None for no limit.
        required: Whether an empty value is an error.
    """

    block_id: str
    action_id: str
    label: str
    min_length: int = 0
    max_length: int | None = None
    required: bool = True

    def check(self, value: str | None) -> str | None:
        """Return an error message, or None if the value passes."""
        text = (value or "").strip()
        if not text:
            return f"{self.label} is required." if self.required else None
        if len(text) < self.min_length:
            return f"{self.label} must be at least {self.min_length} characters."
        if self.max_length is not None and len(text) > self.max_length:
            return f"{self.label} must be at most {self.max_length} characters."
        return None


def _element_value(element: Mapping[str, Any]) -> str | None:
    if element.get("value") is not None:
        return element["value"]
    selected = element.get("selected_option")
    if selected:
        return selected.get("value")
    for key in ("selected_date", "selected_time", "selected_user", "selected_channel"):
        if element.get(key):
            return element[key]
    return None


@dataclass(frozen=True)
class ModalSubmission:
    """One view_submission payload.

    Attributes:
        values: ``view.state.values`` (block id -> action id -> element state).
        trigger: Time-boxed trigger id that came with the submission.
        view_id: Slack view id.
        callback_id: Callback id of the submitted view.
        user: Submitting user id.
        private_metadata: Opaque metadata set when the view was opened.
    """

    values: Mapping[str, Mapping[str, Any]]
    trigger: TriggerToken | None = None
    view_id: str | None = None
    callback_id: str | None = None
    user: str | None = None
    private_metadata: str = ""

    @classmethod
    def from_body(
        cls, body: Mapping[str, Any], trigger_validity: float = DEFAULT_TRIGGER_VALIDITY
    ) -> "ModalSubmission":
        view = body.get("view") or {}
        trigger = None
        if body.get("trigger_id"):
            trigger = TriggerToken(body["trigger_id"], time.time(), trigger_validity)
        return cls(
            values=(view.get("state") or {}).get("values") or {},
            trigger=trigger,
            view_id=view.get("id"),
            callback_id=view.get("callback_id"),
            user=(body.get("user") or {}).get("id"),
            private_metadata=view.get("private_metadata") or "",
        )

    def field(self, rule: FieldRule) -> str | None:
        element = (self.values.get(rule.block_id) or {}).get(rule.action_id) or {}
        return _element_value(element)

    def reply_handle(self) -> ResponseHandle:
        """Follow-up target: the channel kept in private_metadata, else a DM."""
        return ResponseHandle(channel=self.private_metadata or self.user, user=self.user)


class PipelineState(str, Enum):
    VALIDATE = "validate"
    REJECTED = "rejected"
    ACCEPTED = "accepted"


@dataclass(frozen=True)
class ModalOutcome:
    """Terminal result of the pipeline."""

    state: PipelineState
    errors: dict[str, str] = field(default_factory=dict)
    values: dict[str, str] = field(default_factory=dict)
    error: ValidationFailed | None = None

    @property
    def accepted(self) -> bool:
        return self.state is PipelineState.ACCEPTED


Processor = Callable[[dict[str, str], ModalSubmission, CorrelationContext], Awaitable[Any]]


class ModalValidationPipeline:
    """Validates one modal submission, acknowledges it, then processes it.

    A pipeline run starts in VALIDATE and moves to exactly one terminal
    state. Build one pipeline per submission; handling a second time raises
    AcknowledgmentError because the submission has already been consumed.

    Args:
        rules: Field constraints checked before the ack.
        processor: Work run after a plain ack.
        notifier: Receives the generic failure notice if processing fails
            after the ack. Without one the failure is only logged.
        deadline_seconds: Ack deadline used for late-ack warnings.
    """

    def __init__(
        self,
        rules: list[FieldRule],
        processor: Processor | None = None,
        notifier: FailureNotifier | None = None,
        deadline_seconds: float = DEFAULT_ACK_DEADLINE,
    ) -> None:
        self.rules = list(rules)
        self._processor = processor
        self._notifier = notifier
        self._deadline = deadline_seconds
        self.state = PipelineState.VALIDATE

    def validate(self, submission: ModalSubmission) -> ModalOutcome:
        """Check every rule; pure and synchronous."""
        errors: dict[str, str] = {}
        values: dict[str, str] = {}
        for rule in self.rules:
            value = submission.field(rule)
            message = rule.check(value)
            if message:
                errors[rule.block_id] = message
            else:
                values[rule.block_id] = (value or "").strip()
        if errors:
            return ModalOutcome(
                PipelineState.REJECTED, errors=errors, error=ValidationFailed(errors)
            )
        return ModalOutcome(PipelineState.ACCEPTED, values=values)

    async def handle(
        self,
        submission: ModalSubmission,
        ack: Callable[..., Awaitable[Any]],
        event: Event,
        context: CorrelationContext,
    ) -> ModalOutcome:
        """Run validate -> ack -> (process) for one submission.

        Args:
            submission: Parsed submission.
            ack: Platform ack callable.
            event: Event wrapping the raw body.
            context: Correlation context for the submission.

        Returns:
            The terminal ModalOutcome.

        Raises:
            AcknowledgmentError: The submission was already handled.
        """
        if self.state is not PipelineState.VALIDATE:
            raise AcknowledgmentError(
                f"Modal submission {submission.view_id} already {self.state.value}"
            )

        with bind(context):
            outcome = self.validate(submission)
            self.state = outcome.state
            acknowledgment = Acknowledgment(ack, event, context, self._deadline)

            if not outcome.accepted:
                await acknowledgment.send(
                    response_action="errors", errors=outcome.error.errors
                )
                logger.info(
                    "Modal submission rejected",
                    extra={"fields": context.merge(invalid_blocks=sorted(outcome.errors))},
                )
                return outcome

            await acknowledgment.send()
            if self._processor is not None:
                await self._process(outcome, submission, event, context)
            return outcome

    async def _process(
        self,
        outcome: ModalOutcome,
        submission: ModalSubmission,
        event: Event,
        context: CorrelationContext,
    ) -> None:
        async def work(handle: ResponseHandle) -> Any:
            return await self._processor(outcome.values, submission, context)

        if self._notifier is not None:
            gate = AckGate(self._notifier, self._deadline)
            await gate.process(event, context, work, handle=submission.reply_handle())
            return

        try:
            await work(submission.reply_handle())
        except Exception as e:
            log_operation(
                logger,
                "respond-to-message",
                context,
                level=logging.ERROR,
                message="Modal processing failed after acknowledgment",
                exc_info=True,
                error_type=type(e).__name__,
            )
