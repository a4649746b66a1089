"""
Pytest Configuration and Centralized Fixtures.

Provides reusable fixtures for testing:
- In-memory storage and the services built on it
- A fake generation provider
- API test client against the real app with the memory backend
"""

import os
from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

# Set required environment variables BEFORE importing app modules
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("SESSION_JWT_SECRET", "test-session-secret-key-for-hs256-signing")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_fake_secret")
os.environ.setdefault("OPENAI_API_KEY", "sk-test-fake-key")

from helpers import FakeInvoker

from app.config import DEFAULT_TOOL_COSTS, ToolPriceTable
from app.exceptions import UpstreamFailureError
from app.services.api_key import APIKeyService
from app.services.generation_invoker import get_generation_invoker
from app.services.generations import GenerationStore
from app.services.ledger import LedgerService
from app.services.tool_invocation import ToolInvocationService
from app.storage.factory import get_memory_storage, reset_memory_storage
from app.storage.memory import MemoryStorage

INITIAL_CREDITS = 25

# ============================================================================
# Generation provider fixtures
# ============================================================================


@pytest.fixture
def fake_invoker() -> FakeInvoker:
    return FakeInvoker(document={"productName": "Acme Planner", "items": []})


@pytest.fixture
def failing_invoker() -> FakeInvoker:
    return FakeInvoker(error=UpstreamFailureError("provider down"))


# ============================================================================
# Storage and service fixtures
# ============================================================================


@pytest.fixture
def storage() -> MemoryStorage:
    """Fresh in-memory storage per test."""
    return MemoryStorage()


@pytest.fixture
def price_table() -> ToolPriceTable:
    return ToolPriceTable(DEFAULT_TOOL_COSTS)


@pytest.fixture
def ledger(storage: MemoryStorage, price_table: ToolPriceTable) -> LedgerService:
    return LedgerService(storage, price_table, INITIAL_CREDITS)


@pytest.fixture
def api_key_service(storage: MemoryStorage) -> APIKeyService:
    return APIKeyService(storage)


@pytest.fixture
def generation_store(storage: MemoryStorage) -> GenerationStore:
    return GenerationStore(storage)


@pytest.fixture
def invocation_service(
    ledger: LedgerService, generation_store: GenerationStore, fake_invoker: FakeInvoker
) -> ToolInvocationService:
    return ToolInvocationService(ledger, generation_store, fake_invoker)


# ============================================================================
# API client fixtures
# ============================================================================


@pytest.fixture
def app_storage() -> MemoryStorage:
    """The process-wide memory store the app uses, reset per test."""
    reset_memory_storage()
    return get_memory_storage()


@pytest.fixture
async def client(
    app_storage: MemoryStorage, fake_invoker: FakeInvoker
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, with the generation provider faked."""
    from app.main import app

    app.dependency_overrides[get_generation_invoker] = lambda: fake_invoker
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
    reset_memory_storage()
