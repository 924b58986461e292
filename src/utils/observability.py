"""Observability configuration with Pydantic Logfire."""

import logging

from src.config import settings

logger = logging.getLogger(__name__)

_configured = False


def setup_logfire() -> bool:
    """Configure Logfire for observability.

    Only activates if LOGFIRE_TOKEN environment variable is set. Model calls
    made through Pydantic AI and httpx are instrumented.

    Returns:
        True if Logfire is configured.
    """
    global _configured
    if _configured:
        return True
    if not settings.logfire_token:
        return False

    try:
        import logfire

        logfire.configure(token=settings.logfire_token, service_name="threadline")
        logfire.instrument_pydantic_ai()
        logfire.instrument_httpx(capture_all=True)
        _configured = True
    except Exception as e:
        # Log but don't fail - observability is optional
        logger.warning("Failed to configure Logfire: %s", str(e))
    return _configured
