# tests/test_slack_handlers.py
"""Tests for Slack listeners and registration.

The orchestrator is replaced with a mock; these tests check wiring:
ack ordering, redelivery handling, modal validation and trigger expiry.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.config import settings
from src.core.ack_gate import GENERIC_FAILURE_TEXT
from src.interfaces.slack import handlers
from src.interfaces.slack.messages import (
    ASK_CALLBACK_ID,
    DETAILS_ACTION_ID,
    DETAILS_BLOCK_ID,
    EMPTY_COMMAND_TEXT,
    REGENERATE_ACTION_ID,
    TITLE_ACTION_ID,
    TITLE_BLOCK_ID,
    TRIGGER_EXPIRED_TEXT,
)

MENTION = {
    "type": "app_mention",
    "text": "<@U0BOT> hello agent",
    "ts": "1234567890.123456",
    "channel": "C123",
    "user": "U456",
}


def _ordered_mocks():
    """Ack and orchestrator mocks that record call order."""
    order: list[str] = []

    async def ack(**kwargs):
        order.append("ack")

    orchestrator = MagicMock()

    async def respond(event, context, handle, prompt=None):
        order.append("respond")
        return "result"

    orchestrator.respond = AsyncMock(side_effect=respond)
    return order, ack, orchestrator


class TestMessageHandlers:
    """Test mention and DM handling."""

    @pytest.mark.asyncio
    async def test_mention_acks_before_responding(self, reset_singletons):
        order, ack, orchestrator = _ordered_mocks()
        with patch.object(handlers, "_create_orchestrator", return_value=orchestrator):
            result = await handlers.handle_mention(ack, MENTION, AsyncMock())

        assert order == ["ack", "respond"]
        assert result == "result"
        event, context, handle = orchestrator.respond.await_args.args[:3]
        assert event.text == "hello agent"
        assert context.channel == "C123"
        assert handle.thread_ts == "1234567890.123456"

    @pytest.mark.asyncio
    async def test_thread_reply_uses_thread_ts(self, reset_singletons):
        _, ack, orchestrator = _ordered_mocks()
        event = dict(MENTION, thread_ts="1234567890.000001")
        with patch.object(handlers, "_create_orchestrator", return_value=orchestrator):
            await handlers.handle_mention(ack, event, AsyncMock())

        handle = orchestrator.respond.await_args.args[2]
        assert handle.thread_ts == "1234567890.000001"

    @pytest.mark.asyncio
    async def test_redelivery_acked_not_processed(self, reset_singletons):
        ack = AsyncMock()
        orchestrator = MagicMock()
        orchestrator.respond = AsyncMock()
        request = MagicMock(headers={"x-slack-retry-num": ["1"]})

        with patch.object(handlers, "_create_orchestrator", return_value=orchestrator):
            result = await handlers.handle_mention(ack, MENTION, AsyncMock(), request)

        assert result is None
        ack.assert_awaited_once_with()
        orchestrator.respond.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_dm_processed(self, reset_singletons):
        order, ack, orchestrator = _ordered_mocks()
        event = dict(MENTION, type="message", channel_type="im", text="hi there")
        with patch.object(handlers, "_create_orchestrator", return_value=orchestrator):
            await handlers.handle_message(ack, event, AsyncMock())

        assert order == ["ack", "respond"]

    @pytest.mark.asyncio
    async def test_channel_and_bot_messages_only_acked(self, reset_singletons):
        orchestrator = MagicMock()
        orchestrator.respond = AsyncMock()
        with patch.object(handlers, "_create_orchestrator", return_value=orchestrator):
            for event in (
                dict(MENTION, type="message", channel_type="channel"),
                dict(MENTION, type="message", channel_type="im", bot_id="B1"),
            ):
                ack = AsyncMock()
                await handlers.handle_message(ack, event, AsyncMock())
                ack.assert_awaited_once()

        orchestrator.respond.assert_not_awaited()


class TestCommandAndActions:
    """Test /ask and the Regenerate button."""

    @pytest.mark.asyncio
    async def test_command_responds_via_response_url(self, reset_singletons):
        order, ack, orchestrator = _ordered_mocks()
        command = {
            "command": "/ask",
            "text": "what time is it?",
            "channel_id": "C1",
            "user_id": "U1",
            "trigger_id": "1.2.3",
            "response_url": "https://hooks.slack.com/commands/T/1/x",
        }
        with patch.object(handlers, "_create_orchestrator", return_value=orchestrator):
            await handlers.handle_command(ack, command, AsyncMock())

        assert order == ["ack", "respond"]
        handle = orchestrator.respond.await_args.args[2]
        assert handle.response_url == "https://hooks.slack.com/commands/T/1/x"

    @pytest.mark.asyncio
    async def test_empty_command_gets_usage_in_ack(self, reset_singletons):
        ack = AsyncMock()
        orchestrator = MagicMock()
        orchestrator.respond = AsyncMock()
        with patch.object(handlers, "_create_orchestrator", return_value=orchestrator):
            await handlers.handle_command(ack, {"text": "  ", "user_id": "U1"}, AsyncMock())

        ack.assert_awaited_once_with(text=EMPTY_COMMAND_TEXT)
        orchestrator.respond.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_regenerate_uses_button_prompt(self, reset_singletons):
        _, ack, orchestrator = _ordered_mocks()
        body = {
            "type": "block_actions",
            "user": {"id": "U1"},
            "channel": {"id": "C1"},
            "container": {"message_ts": "5.0", "channel_id": "C1"},
            "message": {"ts": "5.0", "thread_ts": "4.0"},
            "actions": [{"action_id": REGENERATE_ACTION_ID, "value": "original question"}],
        }
        with patch.object(handlers, "_create_orchestrator", return_value=orchestrator):
            await handlers.handle_regenerate(ack, body, AsyncMock())

        assert orchestrator.respond.await_args.kwargs["prompt"] == "original question"
        handle = orchestrator.respond.await_args.args[2]
        assert handle.thread_ts == "4.0"
        assert handle.response_url is None


class TestShortcutAndModal:
    """Test modal opening and submission."""

    @pytest.mark.asyncio
    async def test_shortcut_opens_modal(self, reset_singletons):
        ack = AsyncMock()
        client = AsyncMock()
        body = {"type": "shortcut", "trigger_id": "9.9.9", "user": {"id": "U1"}}

        await handlers.handle_shortcut(ack, body, client)

        ack.assert_awaited_once()
        client.views_open.assert_awaited_once()
        kwargs = client.views_open.await_args.kwargs
        assert kwargs["trigger_id"] == "9.9.9"
        assert kwargs["view"]["callback_id"] == ASK_CALLBACK_ID

    @pytest.mark.asyncio
    async def test_expired_trigger_not_used(self, reset_singletons, monkeypatch):
        monkeypatch.setattr(settings, "trigger_validity_seconds", -1.0)
        client = AsyncMock()
        body = {"type": "shortcut", "trigger_id": "9.9.9", "user": {"id": "U1"}}

        await handlers.handle_shortcut(AsyncMock(), body, client)

        client.views_open.assert_not_awaited()
        client.chat_postMessage.assert_awaited_once_with(
            channel="U1", text=TRIGGER_EXPIRED_TEXT
        )

    @staticmethod
    def _submission(title: str) -> dict:
        return {
            "type": "view_submission",
            "trigger_id": "1.1.1",
            "user": {"id": "U1"},
            "view": {
                "id": "V1",
                "callback_id": ASK_CALLBACK_ID,
                "private_metadata": "C42",
                "state": {
                    "values": {
                        TITLE_BLOCK_ID: {TITLE_ACTION_ID: {"value": title}},
                        DETAILS_BLOCK_ID: {DETAILS_ACTION_ID: {"value": None}},
                    }
                },
            },
        }

    @pytest.mark.asyncio
    async def test_invalid_submission_rejected(self, reset_singletons):
        ack = AsyncMock()
        orchestrator = MagicMock()
        orchestrator.respond = AsyncMock()
        with patch.object(handlers, "_create_orchestrator", return_value=orchestrator):
            outcome = await handlers.handle_view_submission(
                ack, self._submission("abcd"), AsyncMock()
            )

        assert not outcome.accepted
        assert ack.await_args.kwargs["response_action"] == "errors"
        orchestrator.respond.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_valid_submission_answered_in_channel(self, reset_singletons):
        ack = AsyncMock()
        client = AsyncMock()
        orchestrator = MagicMock()
        orchestrator.respond = AsyncMock()
        with patch.object(handlers, "_create_orchestrator", return_value=orchestrator):
            outcome = await handlers.handle_view_submission(
                ack, self._submission("abcde"), client
            )

        assert outcome.accepted
        ack.assert_awaited_once_with()
        client.chat_postMessage.assert_awaited_once()
        assert client.chat_postMessage.await_args.kwargs["channel"] == "C42"
        handle = orchestrator.respond.await_args.args[2]
        assert handle.channel == "C42"
        assert orchestrator.respond.await_args.kwargs["prompt"] == "abcde"


class TestRegistration:
    """Test listener registration on the Bolt app."""

    def test_register_listeners(self):
        from src.interfaces.slack.bot import ASK_COMMAND, ASK_SHORTCUT_ID, register_listeners

        app = MagicMock()
        register_listeners(app)

        app.event.assert_any_call("app_mention")
        app.event.assert_any_call("message")
        app.command.assert_called_once_with(ASK_COMMAND)
        app.action.assert_called_once_with(REGENERATE_ACTION_ID)
        app.shortcut.assert_called_once_with(ASK_SHORTCUT_ID)
        app.view.assert_called_once_with(ASK_CALLBACK_ID)

    def test_services_are_shared(self, reset_singletons):
        assert handlers.get_retry_executor() is handlers.get_retry_executor()
        assert handlers.get_price_table() is handlers.get_price_table()
        assert handlers.get_retry_executor().policy.max_attempts == settings.retry_max_attempts

    @pytest.mark.asyncio
    async def test_failed_submission_gets_generic_notice(self, reset_singletons):
        ack = AsyncMock()
        client = AsyncMock()
        orchestrator = MagicMock()
        orchestrator.respond = AsyncMock(side_effect=RuntimeError("boom"))
        with patch.object(handlers, "_create_orchestrator", return_value=orchestrator):
            outcome = await handlers.handle_view_submission(
                ack, TestShortcutAndModal._submission("abcde"), client
            )

        assert outcome.accepted
        ack.assert_awaited_once_with()
        client.chat_postEphemeral.assert_awaited_once_with(
            channel="C42", user="U1", thread_ts=None, text=GENERIC_FAILURE_TEXT
        )
