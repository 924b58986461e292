# src/core/model.py
"""Model provider client built on Pydantic AI."""

import logging
import os
from dataclasses import dataclass
from typing import Protocol

from pydantic_ai import Agent
from pydantic_ai.exceptions import ModelHTTPError
from pydantic_ai.messages import ModelResponse, ToolCallPart

from src.config import settings
from src.core.errors import UpstreamError
from src.utils.observability import setup_logfire

logger = logging.getLogger(__name__)

# Initialize Logfire at module load
setup_logfire()

SYSTEM_PROMPT = (
    "You are a helpful assistant answering questions in a Slack workspace. "
    "Keep answers concise and use Markdown sparingly."
)


@dataclass(frozen=True)
class ModelReply:
    """Text returned by the model plus provider-reported usage."""

    text: str
    input_tokens: int | None = None
    output_tokens: int | None = None
    tool_calls: tuple[str, ...] = ()


def _tool_calls(messages: list) -> tuple[str, ...]:
    """Names of the tools the model invoked during a run, in call order."""
    return tuple(
        part.tool_name
        for message in messages
        if isinstance(message, ModelResponse)
        for part in message.parts
        if isinstance(part, ToolCallPart)
    )


class ModelClient(Protocol):
    async def generate(self, prompt: str, model_id: str) -> ModelReply: ...


class PydanticAIModelClient:
    """Calls Gemini through a fresh Pydantic AI Agent per request.

    Each call gets its own Agent so concurrent events never share
    conversation state. HTTP failures are re-raised as UpstreamError with
    the provider status code; transport errors propagate unchanged so the
    retry executor can classify them.
    """

    def __init__(self, api_key: str | None = None, system_prompt: str = SYSTEM_PROMPT) -> None:
        _key = api_key or settings.api_key
        if not _key:
            raise ValueError(
                "GOOGLE_API_KEY environment variable is required. "
                "Set it or pass api_key parameter."
            )
        os.environ["GOOGLE_API_KEY"] = _key  # Pydantic AI reads this
        self._system_prompt = system_prompt

    def _create_agent(self, model_id: str) -> Agent:
        return Agent(f"google-gla:{model_id}", system_prompt=self._system_prompt)

    async def generate(self, prompt: str, model_id: str) -> ModelReply:
        agent = self._create_agent(model_id)
        try:
            result = await agent.run(prompt)
        except ModelHTTPError as e:
            raise UpstreamError(
                f"Model {e.model_name} returned HTTP {e.status_code}",
                status_code=e.status_code,
            ) from e

        usage = result.usage()
        return ModelReply(
            text=str(result.output),
            input_tokens=getattr(usage, "input_tokens", None),
            output_tokens=getattr(usage, "output_tokens", None),
            tool_calls=_tool_calls(result.all_messages()),
        )
