"""
Generation Invoker - Calls the LLM provider for a tool.

Any provider failure (error, timeout, empty or non-JSON content) becomes an
UpstreamFailureError; raw provider text never leaves this module.
"""

import json
from typing import Any, Protocol

from openai import AsyncOpenAI, OpenAIError
from structlog import get_logger

from app.config import settings
from app.exceptions import UpstreamFailureError
from app.models.domain import ToolType
from app.services.tools import ToolInput, get_tool_definition

logger = get_logger(__name__)


class GenerationInvoker(Protocol):
    """External generation capability."""

    async def generate(self, tool_type: ToolType, tool_input: ToolInput) -> dict[str, Any]:
        """
        Produce the generated document for a validated tool input.

        Raises:
            UpstreamFailureError: Provider failed or returned unusable output
        """
        ...


class OpenAIGenerationInvoker:
    """Chat completions in JSON mode, one prompt per tool."""

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        model: str | None = None,
        temperature: float | None = None,
    ) -> None:
        self._client = client
        self.model = model or settings.openai_model
        self.temperature = temperature if temperature is not None else settings.openai_temperature

    @property
    def client(self) -> AsyncOpenAI:
        """Created on first use so a missing key only fails generation requests."""
        if self._client is None:
            try:
                self._client = AsyncOpenAI(
                    api_key=settings.openai_api_key or None,
                    timeout=settings.openai_timeout_seconds,
                )
            except OpenAIError as e:
                # No OPENAI_API_KEY anywhere
                logger.error("generation_provider_not_configured")
                raise UpstreamFailureError("generation provider is not configured") from e
        return self._client

    async def generate(self, tool_type: ToolType, tool_input: ToolInput) -> dict[str, Any]:
        definition = get_tool_definition(tool_type)
        temperature = (
            definition.temperature if definition.temperature is not None else self.temperature
        )
        client = self.client

        try:
            completion = await client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": definition.build_prompt(tool_input)}],
                response_format={"type": "json_object"},
                temperature=temperature,
            )
        except OpenAIError as e:
            logger.error(
                "generation_provider_error", tool_type=tool_type.value, error=type(e).__name__
            )
            raise UpstreamFailureError("generation provider request failed") from e

        content = completion.choices[0].message.content if completion.choices else None
        if not content:
            logger.error("generation_empty_response", tool_type=tool_type.value)
            raise UpstreamFailureError("generation provider returned no content")

        try:
            document = json.loads(content)
        except json.JSONDecodeError as e:
            logger.error("generation_unparseable_response", tool_type=tool_type.value)
            raise UpstreamFailureError("generation provider returned invalid JSON") from e

        if not isinstance(document, dict):
            logger.error("generation_non_object_response", tool_type=tool_type.value)
            raise UpstreamFailureError("generation provider returned a non-object document")

        return document


_invoker: GenerationInvoker | None = None


def get_generation_invoker() -> GenerationInvoker:
    """Get or create the process-wide invoker."""
    global _invoker
    if _invoker is None:
        _invoker = OpenAIGenerationInvoker()
    return _invoker
