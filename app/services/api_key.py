"""
API Key Service - Issue, list, revoke and validate user API keys.

NO DICTIONARIES - All data uses typed dataclasses.
The plaintext secret leaves this module exactly once, from create_api_key.
"""

from uuid import UUID

from structlog import get_logger

from app.db.models import utc_now
from app.exceptions import APIKeyNotFoundError, InputValidationError, StorageError
from app.models.domain import ApiKeyInfo, ApiKeyRecord, AuthResult, CreatedApiKey
from app.services.key_material import (
    RandomSource,
    display_prefix,
    generate_secret,
    hash_secret,
    is_valid_format,
)
from app.storage.base import Storage

logger = get_logger(__name__)

MAX_KEY_NAME_LENGTH = 100


def _to_info(record: ApiKeyRecord) -> ApiKeyInfo:
    return ApiKeyInfo(
        key_id=record.key_id,
        name=record.name,
        prefix=f"{record.key_prefix}...",
        created_at=record.created_at,
        last_used_at=record.last_used_at,
    )


class APIKeyService:
    """Credential store for user-issued API keys."""

    def __init__(self, storage: Storage, random_source: RandomSource | None = None) -> None:
        self.storage = storage
        self._random_source = random_source

    async def create_api_key(self, external_id: str, name: str) -> CreatedApiKey:
        """
        Create a new API key for a profile.

        Args:
            external_id: Owner (identity-provider subject)
            name: Label, 1-100 characters after trimming

        Returns:
            CreatedApiKey with the plaintext secret (shown once!)

        Raises:
            InputValidationError: Name empty or too long
            ProfileNotFoundError: Owner has no profile
        """
        cleaned = name.strip()
        if not cleaned:
            raise InputValidationError("API key name is required")
        if len(cleaned) > MAX_KEY_NAME_LENGTH:
            raise InputValidationError(
                f"API key name must be at most {MAX_KEY_NAME_LENGTH} characters"
            )

        secret = (
            generate_secret(self._random_source) if self._random_source else generate_secret()
        )
        record = await self.storage.insert_api_key(
            external_id=external_id,
            name=cleaned,
            key_prefix=display_prefix(secret),
            key_hash=hash_secret(secret),
        )

        logger.info(
            "api_key_created",
            key_id=str(record.key_id),
            external_id=external_id,
            prefix=record.key_prefix,
        )

        return CreatedApiKey(plaintext_secret=secret, info=_to_info(record))

    async def list_api_keys(self, external_id: str) -> list[ApiKeyInfo]:
        """Active keys for a profile, newest first."""
        records = await self.storage.list_api_keys(external_id)
        return [_to_info(record) for record in records]

    async def revoke_api_key(self, external_id: str, key_id: UUID) -> None:
        """
        Revoke a key owned by `external_id`.

        Raises:
            APIKeyNotFoundError: Unknown, not owned, or already revoked
                (deliberately indistinguishable)
        """
        revoked = await self.storage.revoke_api_key(external_id, key_id, utc_now())
        if not revoked:
            raise APIKeyNotFoundError(key_id)
        logger.info("api_key_revoked", key_id=str(key_id), external_id=external_id)

    async def validate_api_key(self, candidate: str) -> AuthResult:
        """
        Resolve a bearer secret to its owner.

        Failure reasons are for logs only; callers must not echo them.
        """
        if not is_valid_format(candidate):
            logger.warning("api_key_invalid_format", prefix=candidate[:8])
            return AuthResult(valid=False, reason="malformed")

        record = await self.storage.find_api_key_by_hash(hash_secret(candidate))
        if record is None:
            logger.warning("api_key_not_found", prefix=display_prefix(candidate))
            return AuthResult(valid=False, reason="unknown")

        if record.is_revoked:
            logger.warning("api_key_revoked_used", key_id=str(record.key_id))
            return AuthResult(valid=False, reason="revoked")

        # Advisory only - a failed touch never fails the request
        try:
            await self.storage.touch_api_key(record.key_id, utc_now())
        except StorageError as exc:
            logger.warning("api_key_touch_failed", key_id=str(record.key_id), error=exc.message)

        return AuthResult(valid=True, external_id=record.external_id, key_id=record.key_id)
