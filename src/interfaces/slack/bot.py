# src/interfaces/slack/bot.py
"""Socket Mode entry point for the responder.

Wires the listeners in handlers.py onto a Bolt AsyncApp, registers the
shared RetryExecutor with the lifecycle manager and runs until the
process is stopped.
"""

import asyncio
import logging

from dotenv import load_dotenv
from slack_bolt.async_app import AsyncApp

# Load environment variables from .env file
load_dotenv()
from slack_bolt.adapter.socket_mode.async_handler import AsyncSocketModeHandler

from src.config import settings
from src.core.lifecycle import get_lifecycle_manager
from src.interfaces.slack.handlers import (
    get_retry_executor,
    handle_command,
    handle_mention,
    handle_message,
    handle_regenerate,
    handle_shortcut,
    handle_view_submission,
)
from src.interfaces.slack.messages import ASK_CALLBACK_ID, REGENERATE_ACTION_ID
from src.utils.logging import configure_structured_logging

logger = logging.getLogger(__name__)

ASK_COMMAND = "/ask"
ASK_SHORTCUT_ID = "ask_shortcut"


# ============================================================================
# Listener Registration
# ============================================================================


def register_listeners(app: AsyncApp) -> AsyncApp:
    """Attach all listeners to an AsyncApp.

    Args:
        app: Bolt app to register on.

    Returns:
        The same app, for chaining.
    """
    app.event("app_mention")(handle_mention)
    app.event("message")(handle_message)
    app.command(ASK_COMMAND)(handle_command)
    app.action(REGENERATE_ACTION_ID)(handle_regenerate)
    app.shortcut(ASK_SHORTCUT_ID)(handle_shortcut)
    app.view(ASK_CALLBACK_ID)(handle_view_submission)
    return app


# ============================================================================
# Bot Factory and Startup Functions
# ============================================================================


def create_bot(
    bot_token: str | None = None, app_token: str | None = None
) -> tuple[AsyncApp, AsyncSocketModeHandler]:
    """Build the Bolt app and its Socket Mode handler.

    Tokens fall back to SLACK_BOT_TOKEN / SLACK_APP_TOKEN from settings.

    Returns:
        (app, handler) pair; call handler.start_async() to connect.
    """
    app = register_listeners(AsyncApp(token=bot_token or settings.slack_bot_token))
    return app, AsyncSocketModeHandler(app, app_token or settings.slack_app_token)


async def start_bot(bot_token: str | None = None, app_token: str | None = None) -> None:
    """Start the Slack bot with Socket Mode."""
    _, handler = create_bot(bot_token, app_token)

    lifecycle = get_lifecycle_manager()
    lifecycle.register("retry-executor", get_retry_executor())

    logger.info("Starting Slack bot with Socket Mode...")
    try:
        async with lifecycle:
            await handler.start_async()
    except asyncio.CancelledError:
        logger.info("Received shutdown signal")
    finally:
        await handler.close_async()
        logger.info("Slack bot stopped")


def main() -> None:
    """Entry point with graceful shutdown handling."""
    configure_structured_logging(settings.log_level.upper(), json_output=settings.log_json)

    try:
        asyncio.run(start_bot())
    except KeyboardInterrupt:
        logger.info("Shutdown complete")


if __name__ == "__main__":
    main()
