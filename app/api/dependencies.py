"""
FastAPI Dependencies - Storage, services and authentication.

NO DICTIONARIES - All dependencies return typed objects.
"""

from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import Depends, Header, Request

from app.config import settings
from app.services.api_key import APIKeyService
from app.services.generation_invoker import GenerationInvoker, get_generation_invoker
from app.services.generations import GenerationStore
from app.services.identity import SessionIdentity, SessionVerifier, get_session_verifier
from app.services.ledger import LedgerService
from app.services.payment_events import PaymentEventHandler
from app.services.request_auth import RequestAuthenticator
from app.services.tool_invocation import ToolInvocationService
from app.storage.base import Storage
from app.storage.factory import open_storage

# ============================================================================
# Storage and services
# ============================================================================


async def get_storage() -> AsyncIterator[Storage]:
    """One storage handle per request (one DB session for the sql backend)."""
    async with open_storage() as storage:
        yield storage


StorageDep = Annotated[Storage, Depends(get_storage)]


def get_ledger(storage: StorageDep) -> LedgerService:
    return LedgerService(storage, settings.price_table, settings.initial_credits)


def get_api_key_service(storage: StorageDep) -> APIKeyService:
    return APIKeyService(storage)


def get_generation_store(storage: StorageDep) -> GenerationStore:
    return GenerationStore(storage)


LedgerDep = Annotated[LedgerService, Depends(get_ledger)]
APIKeyServiceDep = Annotated[APIKeyService, Depends(get_api_key_service)]
GenerationStoreDep = Annotated[GenerationStore, Depends(get_generation_store)]


def get_tool_invocation_service(
    ledger: LedgerDep,
    generations: GenerationStoreDep,
    invoker: Annotated[GenerationInvoker, Depends(get_generation_invoker)],
) -> ToolInvocationService:
    return ToolInvocationService(ledger, generations, invoker)


def get_payment_event_handler(ledger: LedgerDep) -> PaymentEventHandler:
    return PaymentEventHandler(ledger)


ToolInvocationDep = Annotated[ToolInvocationService, Depends(get_tool_invocation_service)]

# ============================================================================
# Authentication
# ============================================================================


def get_request_authenticator(
    api_keys: APIKeyServiceDep,
    verifier: Annotated[SessionVerifier, Depends(get_session_verifier)],
) -> RequestAuthenticator:
    return RequestAuthenticator(api_keys, verifier)


AuthenticatorDep = Annotated[RequestAuthenticator, Depends(get_request_authenticator)]


async def require_api_key(
    authenticator: AuthenticatorDep,
    authorization: Annotated[str | None, Header()] = None,
) -> str:
    """
    Bearer path: resolve `Authorization: Bearer <api key>` to an external id.

    Raises:
        AuthenticationError: 401 via the registered handler
    """
    return await authenticator.authenticate_bearer(authorization)


async def require_session(
    request: Request,
    authenticator: AuthenticatorDep,
    authorization: Annotated[str | None, Header()] = None,
) -> SessionIdentity:
    """
    Session path: resolve the identity-provider session cookie (or bearer JWT).

    Raises:
        AuthenticationError: 401 via the registered handler
    """
    cookie = request.cookies.get(settings.session_cookie_name)
    return await authenticator.authenticate_session(cookie, authorization)


ApiKeyOwner = Annotated[str, Depends(require_api_key)]
SessionUser = Annotated[SessionIdentity, Depends(require_session)]
