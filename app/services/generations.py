"""
Generation Record Store - Persisted tool invocation results.

Has no transactional coupling to the ledger; ordering between the two is
owned by the tool invocation service.
"""

from typing import Any
from uuid import UUID, uuid4

from structlog import get_logger

from app.config import settings
from app.models.domain import GenerationData, ToolType
from app.storage.base import Storage

logger = get_logger(__name__)


def clamp_limit(limit: int | None, default: int, maximum: int) -> int:
    """Clamp a requested page size to [1, maximum]; None means default."""
    if limit is None:
        return default
    return max(1, min(limit, maximum))


class GenerationStore:
    """Save and list generations for a profile."""

    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    async def save(
        self,
        external_id: str,
        tool_type: ToolType,
        title: str | None,
        input_document: dict[str, Any],
        output_document: dict[str, Any],
        credits_used: int,
        generation_id: UUID | None = None,
    ) -> GenerationData:
        """
        Persist a generation.

        Args:
            generation_id: Pre-assigned id (so a debit can reference it first);
                a fresh one is assigned when omitted

        Raises:
            ProfileNotFoundError: Profile doesn't exist
        """
        generation = await self.storage.insert_generation(
            external_id=external_id,
            generation_id=generation_id or uuid4(),
            tool_type=tool_type,
            title=title,
            input_document=input_document,
            output_document=output_document,
            credits_used=credits_used,
        )
        logger.info(
            "generation_saved",
            external_id=external_id,
            generation_id=str(generation.generation_id),
            tool_type=tool_type.value,
            credits_used=credits_used,
        )
        return generation

    async def list_for_user(
        self,
        external_id: str,
        limit: int | None = None,
        tool_type: ToolType | None = None,
    ) -> list[GenerationData]:
        """Generations for a profile, newest first, limit clamped."""
        effective = clamp_limit(
            limit, settings.generations_default_limit, settings.generations_max_limit
        )
        return await self.storage.list_generations(external_id, effective, tool_type)
