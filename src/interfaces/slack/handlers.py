# src/interfaces/slack/handlers.py
"""Event handlers for Slack bot.

Provides handlers for:
- @mentions (app_mention event)
- Direct messages (message event, channel_type="im")
- /ask slash command
- "Regenerate" button actions
- "Ask" shortcut (opens a modal with the time-boxed trigger id)
- "Ask" modal submissions (validated before they are acknowledged)

Every handler acknowledges first and does the slow work after the ack,
in the same listener. Bolt returns the ack to Slack as soon as ack() is
called, so the model call never holds up the 3 second deadline.
"""

import logging
from collections.abc import Callable
from typing import Any

from src.config import settings
from src.core.ack_gate import AckGate, ResponseHandle, is_redelivery
from src.core.correlation import CorrelationContext, bind, create_context
from src.core.cost import PriceTable
from src.core.errors import TriggerExpired
from src.core.events import Event, EventKind
from src.core.modal import ModalSubmission, ModalValidationPipeline
from src.core.model import ModelClient, PydanticAIModelClient
from src.core.orchestrator import ResponseOrchestrator
from src.core.retry import RetryExecutor, RetryPolicy
from src.interfaces.slack.delivery import SlackDelivery
from src.interfaces.slack.messages import (
    ASK_RULES,
    DETAILS_BLOCK_ID,
    EMPTY_COMMAND_TEXT,
    MODAL_RECEIVED_TEXT,
    TITLE_BLOCK_ID,
    TRIGGER_EXPIRED_TEXT,
    build_ask_modal,
)
from src.utils.logging import truncate_for_log

logger = logging.getLogger(__name__)


# ============================================================================
# Shared, read-only services
# ============================================================================

_retry_executor: RetryExecutor | None = None
_price_table: PriceTable | None = None
_model_client: ModelClient | None = None


def get_retry_executor() -> RetryExecutor:
    """Get the process-wide RetryExecutor (registered with the lifecycle manager)."""
    global _retry_executor
    if _retry_executor is None:
        _retry_executor = RetryExecutor(RetryPolicy.from_settings(settings))
    return _retry_executor


def get_price_table() -> PriceTable:
    global _price_table
    if _price_table is None:
        _price_table = PriceTable.from_settings(settings)
    return _price_table


def get_model_client() -> ModelClient:
    global _model_client
    if _model_client is None:
        _model_client = PydanticAIModelClient(api_key=settings.api_key)
    return _model_client


def reset_services() -> None:
    """Drop cached services (for testing)."""
    global _retry_executor, _price_table, _model_client
    _retry_executor = None
    _price_table = None
    _model_client = None


def _create_orchestrator(delivery: SlackDelivery) -> ResponseOrchestrator:
    return ResponseOrchestrator(
        model_client=get_model_client(),
        delivery=delivery,
        executor=get_retry_executor(),
        price_table=get_price_table(),
        model_id=settings.gemini_model,
        cost_ceiling=settings.cost_ceiling,
        projected_output_tokens=settings.projected_output_tokens,
        chars_per_token=settings.chars_per_token,
    )


def _request_headers(request: Any) -> dict[str, Any] | None:
    return getattr(request, "headers", None) if request is not None else None


# ============================================================================
# Common path: ack -> orchestrated response
# ============================================================================


async def _acknowledge_and_respond(
    event: Event,
    ack: Callable,
    client: Any,
    request: Any = None,
    prompt: str | None = None,
) -> Any:
    """Acknowledge an event, then answer it through the orchestrator.

    Args:
        event: Inbound event.
        ack: Bolt ack function.
        client: Slack AsyncWebClient.
        request: Bolt request (used to detect Slack redeliveries).
        prompt: Prompt override; defaults to the event text.

    Returns:
        OrchestrationResult, or None if the event was a redelivery or failed.
    """
    context = create_context(event)
    delivery = SlackDelivery(client)
    gate = AckGate(delivery, deadline_seconds=settings.ack_deadline_seconds)

    if is_redelivery(_request_headers(request)):
        with bind(context):
            await gate.acknowledgment(ack, event, context).send()
            logger.info(
                "Ignoring Slack redelivery",
                extra={"fields": context.merge(operation="ack", redelivery=True)},
            )
        return None

    orchestrator = _create_orchestrator(delivery)

    async def work(handle: ResponseHandle) -> Any:
        logger.info(
            "Processing %s: %s",
            event.kind.value,
            truncate_for_log(prompt if prompt is not None else event.text, 100),
        )
        return await orchestrator.respond(event, context, handle, prompt=prompt)

    return await gate.handle(event, context, ack, work)


# ============================================================================
# Messages
# ============================================================================


async def handle_mention(
    ack: Callable, event: dict[str, Any], client: Any, request: Any = None
) -> Any:
    """Answer an @mention in the thread it came from."""
    return await _acknowledge_and_respond(
        Event.from_message(event, EventKind.MENTION), ack, client, request
    )


async def handle_message(
    ack: Callable, event: dict[str, Any], client: Any, request: Any = None
) -> Any:
    """Handle message events, answering DMs only."""
    if event.get("channel_type") != "im" or event.get("bot_id") or event.get("subtype"):
        await ack()
        return None
    return await _acknowledge_and_respond(
        Event.from_message(event, EventKind.DIRECT_MESSAGE), ack, client, request
    )


# ============================================================================
# Slash command / actions
# ============================================================================


async def handle_command(
    ack: Callable, command: dict[str, Any], client: Any, request: Any = None
) -> Any:
    """Handle ``/ask <question>``; the answer goes to the command's response_url."""
    event = Event.from_command(command, settings.trigger_validity_seconds)
    if not (command.get("text") or "").strip():
        context = create_context(event)
        with bind(context):
            await AckGate(SlackDelivery(client)).acknowledgment(ack, event, context).send(
                text=EMPTY_COMMAND_TEXT
            )
        return None
    return await _acknowledge_and_respond(event, ack, client, request)


async def handle_regenerate(
    ack: Callable, body: dict[str, Any], client: Any, request: Any = None
) -> Any:
    """Re-run the prompt stored on a "Regenerate" button."""
    event = Event.from_interaction(
        EventKind.ACTION, body, settings.trigger_validity_seconds
    )
    actions = body.get("actions") or [{}]
    prompt = actions[0].get("value") or ""
    return await _acknowledge_and_respond(event, ack, client, request, prompt=prompt)


# ============================================================================
# Shortcut -> modal -> submission
# ============================================================================


async def handle_shortcut(ack: Callable, body: dict[str, Any], client: Any) -> None:
    """Open the "ask" modal; the trigger id is only valid for a few seconds."""
    event = Event.from_interaction(
        EventKind.SHORTCUT, body, settings.trigger_validity_seconds
    )
    context = create_context(event)
    delivery = SlackDelivery(client)
    gate = AckGate(delivery, deadline_seconds=settings.ack_deadline_seconds)

    async def open_modal(handle: ResponseHandle) -> None:
        if event.trigger is None:
            logger.warning("Shortcut without trigger_id")
            return
        try:
            trigger_id = event.trigger.ensure_valid()
        except TriggerExpired as e:
            logger.warning(
                "Trigger expired before opening modal",
                extra={"fields": context.merge(trigger_age=round(e.age, 3))},
            )
            if handle.user:
                await client.chat_postMessage(channel=handle.user, text=TRIGGER_EXPIRED_TEXT)
            return
        await delivery.open_view(trigger_id, build_ask_modal(private_metadata=handle.channel or ""))

    await gate.handle(event, context, ack, open_modal)


async def handle_view_submission(ack: Callable, body: dict[str, Any], client: Any) -> Any:
    """Validate the "ask" modal, then answer it after the ack."""
    event = Event.from_interaction(
        EventKind.VIEW_SUBMISSION, body, settings.trigger_validity_seconds
    )
    context = create_context(event)
    submission = ModalSubmission.from_body(body, settings.trigger_validity_seconds)
    delivery = SlackDelivery(client)

    async def process(
        values: dict[str, str], submission: ModalSubmission, context: CorrelationContext
    ) -> None:
        title = values[TITLE_BLOCK_ID]
        details = values.get(DETAILS_BLOCK_ID, "")
        handle = submission.reply_handle()
        await delivery.deliver(handle, MODAL_RECEIVED_TEXT.format(title=title))
        prompt = f"{title}\n\n{details}".strip()
        await _create_orchestrator(delivery).respond(event, context, handle, prompt=prompt)

    pipeline = ModalValidationPipeline(
        ASK_RULES,
        process,
        notifier=delivery,
        deadline_seconds=settings.ack_deadline_seconds,
    )
    return await pipeline.handle(submission, ack, event, context)
