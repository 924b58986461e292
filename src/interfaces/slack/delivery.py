# src/interfaces/slack/delivery.py
"""Delivery of replies and follow-up notices to Slack."""

import logging
from typing import Any

from slack_sdk.errors import SlackApiError
from slack_sdk.webhook.async_client import AsyncWebhookClient

from src.core.ack_gate import ResponseHandle
from src.interfaces.slack.messages import regenerate_blocks

logger = logging.getLogger(__name__)

SLACK_MESSAGE_LIMIT = 2500


# (separator, earliest acceptable break as a fraction of the limit)
_BREAKS = (("\n\n", 0.5), ("\n", 0.3), (" ", 0.3))


def _break_point(window: str, limit: int) -> int:
    for separator, floor in _BREAKS:
        index = window.rfind(separator)
        if index >= limit * floor:
            return index
    return limit


def split_reply(text: str, limit: int = SLACK_MESSAGE_LIMIT) -> list[str]:
    """Cut a reply into parts of at most ``limit`` characters.

    Prefers paragraph breaks, then line breaks, then spaces; a part with
    none of them late enough is cut hard at the limit.
    """
    parts: list[str] = []
    remaining = text
    while len(remaining) > limit:
        cut = _break_point(remaining[:limit], limit)
        parts.append(remaining[:cut].rstrip())
        remaining = remaining[cut:].lstrip()
    if remaining or not parts:
        parts.append(remaining)
    return parts


class SlackDelivery:
    """Posts replies to a thread or to a command's response_url.

    Args:
        client: Slack AsyncWebClient instance.
    """

    def __init__(self, client: Any) -> None:
        self._client = client

    async def deliver(
        self, handle: ResponseHandle, text: str, prompt: str | None = None
    ) -> None:
        """Send a reply, splitting it into parts if it is too long.

        Args:
            handle: Follow-up target captured at ack time.
            text: Reply text.
            prompt: Prompt that produced the reply. When given, the last part
                gets a "Regenerate" button carrying it.
        """
        chunks = split_reply(text)
        for i, chunk in enumerate(chunks):
            part_indicator = f"({i + 1}/{len(chunks)})" if len(chunks) > 1 else ""
            body = f"{chunk}\n{part_indicator}".strip() if part_indicator else chunk
            if handle.response_url:
                await self._send_to_response_url(handle.response_url, body, "in_channel")
                continue
            kwargs: dict[str, Any] = {}
            if prompt and i == len(chunks) - 1:
                kwargs["blocks"] = regenerate_blocks(body, prompt)
            await self._client.chat_postMessage(
                channel=handle.channel, thread_ts=handle.thread_ts, text=body, **kwargs
            )

    async def notify_failure(self, handle: ResponseHandle, text: str) -> None:
        """Tell the user their request failed, visible only to them when possible."""
        if handle.response_url:
            await self._send_to_response_url(handle.response_url, text, "ephemeral")
            return
        if handle.user and handle.channel:
            try:
                await self._client.chat_postEphemeral(
                    channel=handle.channel,
                    user=handle.user,
                    thread_ts=handle.thread_ts,
                    text=text,
                )
                return
            except SlackApiError as e:
                logger.warning(
                    "Ephemeral notice failed (%s), posting in thread",
                    e.response.get("error"),
                )
        await self._client.chat_postMessage(
            channel=handle.channel, thread_ts=handle.thread_ts, text=text
        )

    async def open_view(self, trigger_id: str, view: dict[str, Any]) -> None:
        await self._client.views_open(trigger_id=trigger_id, view=view)

    @staticmethod
    async def _send_to_response_url(url: str, text: str, response_type: str) -> None:
        webhook = AsyncWebhookClient(url)
        response = await webhook.send(text=text, response_type=response_type)
        if response.status_code >= 400:
            logger.warning(
                "response_url post failed with status %s", response.status_code
            )
