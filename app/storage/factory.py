"""
Storage Factory - Selects the storage backend once, from STORAGE_BACKEND.

"sql" opens one SqlStorage per unit of work on a pooled session.
"memory" shares one process-wide MemoryStorage.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from structlog import get_logger

from app.config import settings
from app.db.session import get_session
from app.storage.base import Storage
from app.storage.memory import MemoryStorage
from app.storage.sql import SqlStorage

logger = get_logger(__name__)

_memory_storage: MemoryStorage | None = None


def get_memory_storage() -> MemoryStorage:
    """Get or create the process-wide in-memory store."""
    global _memory_storage
    if _memory_storage is None:
        logger.warning("memory_storage_in_use", detail="data is not persisted across restarts")
        _memory_storage = MemoryStorage()
    return _memory_storage


def reset_memory_storage() -> None:
    """Drop the in-memory store (tests)."""
    global _memory_storage
    _memory_storage = None


@asynccontextmanager
async def open_storage() -> AsyncIterator[Storage]:
    """
    Open storage for one request or job.

    Usage:
        async with open_storage() as storage:
            profile = await storage.get_profile(external_id)
    """
    if settings.storage_backend == "memory":
        yield get_memory_storage()
        return

    async with get_session() as session:
        yield SqlStorage(session)
