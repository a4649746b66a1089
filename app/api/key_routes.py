"""
API Key Management routes - Session-authenticated.

A signed-in user creates, lists and revokes their own keys. The plaintext
secret is returned once, by the create endpoint, and never again.
"""

from uuid import UUID

from fastapi import APIRouter
from structlog import get_logger

from app.api.dependencies import APIKeyServiceDep, LedgerDep, SessionUser
from app.exceptions import APIKeyNotFoundError
from app.models.api import (
    APIKeyListResponse,
    APIKeyResponse,
    CreateAPIKeyRequest,
    CreatedAPIKeyResponse,
    RevokeAPIKeyResponse,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/api-keys", tags=["api-keys"])


@router.post("", response_model=CreatedAPIKeyResponse)
async def create_api_key(
    request: CreateAPIKeyRequest,
    user: SessionUser,
    ledger: LedgerDep,
    api_keys: APIKeyServiceDep,
) -> CreatedAPIKeyResponse:
    """Issue a new key. The response is the only place the secret appears."""
    await ledger.get_or_create_profile(user.external_id, user.email, user.name)
    created = await api_keys.create_api_key(user.external_id, request.name)

    return CreatedAPIKeyResponse(
        id=created.info.key_id,
        name=created.info.name,
        prefix=created.info.prefix,
        created_at=created.info.created_at,
        plaintext_secret=created.plaintext_secret,
    )


@router.get("", response_model=APIKeyListResponse)
async def list_api_keys(user: SessionUser, api_keys: APIKeyServiceDep) -> APIKeyListResponse:
    keys = await api_keys.list_api_keys(user.external_id)
    return APIKeyListResponse(keys=[APIKeyResponse.from_domain(info) for info in keys])


@router.delete("/{key_id}", response_model=RevokeAPIKeyResponse)
async def revoke_api_key(
    key_id: str,
    user: SessionUser,
    api_keys: APIKeyServiceDep,
) -> RevokeAPIKeyResponse:
    """
    Revoke one of the caller's keys.

    Unknown, foreign and already-revoked keys all answer 404.
    """
    try:
        parsed_id = UUID(key_id)
    except ValueError:
        # No key can have a malformed id
        raise APIKeyNotFoundError(key_id) from None

    await api_keys.revoke_api_key(user.external_id, parsed_id)
    logger.info("api_key_revoke_requested", key_id=key_id, external_id=user.external_id)
    return RevokeAPIKeyResponse()
