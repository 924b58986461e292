# tests/test_model.py
"""Tests for the Pydantic AI model client."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic_ai.exceptions import ModelHTTPError
from pydantic_ai.messages import ModelResponse, TextPart, ToolCallPart

from src.core.errors import UpstreamError
from src.core.model import PydanticAIModelClient


def _agent_returning(result=None, error=None) -> MagicMock:
    agent = MagicMock()
    agent.run = AsyncMock(return_value=result, side_effect=error)
    return agent


class TestPydanticAIModelClient:
    """Test reply mapping and error conversion."""

    def test_requires_api_key(self):
        with patch("src.core.model.settings") as mock_settings:
            mock_settings.api_key = ""
            with pytest.raises(ValueError, match="GOOGLE_API_KEY"):
                PydanticAIModelClient(api_key="")

    @pytest.mark.asyncio
    async def test_reply_with_usage_and_tools(self):
        result = MagicMock()
        result.output = "Sunny."
        result.usage.return_value = MagicMock(input_tokens=11, output_tokens=4)
        result.all_messages.return_value = [
            ModelResponse(parts=[ToolCallPart(tool_name="get_weather", args={})]),
            ModelResponse(parts=[TextPart(content="Sunny.")]),
        ]

        with patch("src.core.model.Agent", return_value=_agent_returning(result)) as agent_cls:
            reply = await PydanticAIModelClient(api_key="k").generate("weather?", "gemini-2.5-flash")

        assert agent_cls.call_args.args[0] == "google-gla:gemini-2.5-flash"
        assert reply.text == "Sunny."
        assert reply.input_tokens == 11
        assert reply.output_tokens == 4
        assert reply.tool_calls == ("get_weather",)

    @pytest.mark.asyncio
    async def test_http_error_becomes_upstream_error(self):
        error = ModelHTTPError(status_code=429, model_name="gemini-2.5-flash")

        with patch("src.core.model.Agent", return_value=_agent_returning(error=error)):
            with pytest.raises(UpstreamError) as exc_info:
                await PydanticAIModelClient(api_key="k").generate("hi", "gemini-2.5-flash")

        assert exc_info.value.status_code == 429
        assert exc_info.value.__cause__ is error
