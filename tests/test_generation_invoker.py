"""
Tests for the OpenAI generation invoker with a mocked client.
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from app.exceptions import UpstreamFailureError
from app.models.domain import ToolType
from app.services.generation_invoker import OpenAIGenerationInvoker
from app.services.tools import parse_tool_input

ROADMAP_INPUT = parse_tool_input(
    ToolType.ROADMAP, {"productDescription": "A habit tracker for remote teams"}
)
PERSONA_INPUT = parse_tool_input(
    ToolType.PERSONA,
    {
        "productDescription": "A budgeting app for freelancers",
        "targetIndustry": "Design",
        "userRole": "Freelancer",
    },
)


def completion(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def mock_client(result=None, error: Exception | None = None) -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=result, side_effect=error)
    return client


class TestOpenAIGenerationInvoker:
    """Tests for OpenAIGenerationInvoker.generate."""

    @pytest.mark.asyncio
    async def test_returns_parsed_document(self):
        client = mock_client(completion(json.dumps({"productName": "Acme"})))
        invoker = OpenAIGenerationInvoker(client=client, model="gpt-test", temperature=0.5)

        document = await invoker.generate(ToolType.ROADMAP, ROADMAP_INPUT)

        assert document == {"productName": "Acme"}
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-test"
        assert kwargs["temperature"] == 0.5
        assert kwargs["response_format"] == {"type": "json_object"}
        assert "A habit tracker for remote teams" in kwargs["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_tool_temperature_overrides_default(self):
        client = mock_client(completion("{}"))
        invoker = OpenAIGenerationInvoker(client=client, temperature=0.5)

        await invoker.generate(ToolType.PERSONA, PERSONA_INPUT)

        assert client.chat.completions.create.call_args.kwargs["temperature"] == 0.8

    @pytest.mark.asyncio
    async def test_provider_error(self):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        client = mock_client(error=openai.APIConnectionError(request=request))
        invoker = OpenAIGenerationInvoker(client=client)

        with pytest.raises(UpstreamFailureError):
            await invoker.generate(ToolType.ROADMAP, ROADMAP_INPUT)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", [None, "", "not json", "[1, 2, 3]"])
    async def test_unusable_output(self, content):
        invoker = OpenAIGenerationInvoker(client=mock_client(completion(content)))

        with pytest.raises(UpstreamFailureError):
            await invoker.generate(ToolType.ROADMAP, ROADMAP_INPUT)

    @pytest.mark.asyncio
    async def test_no_choices(self):
        invoker = OpenAIGenerationInvoker(client=mock_client(SimpleNamespace(choices=[])))

        with pytest.raises(UpstreamFailureError):
            await invoker.generate(ToolType.ROADMAP, ROADMAP_INPUT)
