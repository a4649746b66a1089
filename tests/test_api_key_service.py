"""
Tests for API Key Service.

Tests key creation, listing, revocation and validation.
"""

from uuid import uuid4

import pytest

from app.exceptions import APIKeyNotFoundError, InputValidationError, StorageError
from app.services.api_key import APIKeyService
from app.services.key_material import hash_secret, is_valid_format
from app.services.ledger import LedgerService
from app.storage.memory import MemoryStorage


@pytest.fixture
async def owner(ledger: LedgerService) -> str:
    await ledger.get_or_create_profile("user_owner")
    return "user_owner"


@pytest.fixture
async def other_user(ledger: LedgerService) -> str:
    await ledger.get_or_create_profile("user_other")
    return "user_other"


class TestCreateAPIKey:
    """Tests for create_api_key."""

    @pytest.mark.asyncio
    async def test_create_returns_plaintext_once(
        self, api_key_service: APIKeyService, storage: MemoryStorage, owner: str
    ):
        """Created key carries the secret; storage only has its digest."""
        created = await api_key_service.create_api_key(owner, "CI Server")

        assert is_valid_format(created.plaintext_secret)
        assert created.info.name == "CI Server"
        assert created.info.prefix.endswith("...")
        assert created.plaintext_secret.startswith(created.info.prefix[:-3])

        record = await storage.find_api_key_by_hash(hash_secret(created.plaintext_secret))
        assert record is not None
        assert record.external_id == owner
        assert created.plaintext_secret not in (record.key_prefix, record.key_hash)

    @pytest.mark.asyncio
    async def test_name_is_trimmed(self, api_key_service: APIKeyService, owner: str):
        created = await api_key_service.create_api_key(owner, "  Deploy bot  ")

        assert created.info.name == "Deploy bot"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["", "   "])
    async def test_empty_name_rejected(
        self, api_key_service: APIKeyService, owner: str, name: str
    ):
        with pytest.raises(InputValidationError):
            await api_key_service.create_api_key(owner, name)

    @pytest.mark.asyncio
    async def test_name_length_limit(self, api_key_service: APIKeyService, owner: str):
        created = await api_key_service.create_api_key(owner, "x" * 100)
        assert len(created.info.name) == 100

        with pytest.raises(InputValidationError):
            await api_key_service.create_api_key(owner, "x" * 101)

    @pytest.mark.asyncio
    async def test_deterministic_random_source(self, storage: MemoryStorage, owner: str):
        """Injected randomness flows into the secret."""
        service = APIKeyService(storage, random_source=lambda n: b"\x01" * n)

        created = await service.create_api_key(owner, "Fixed")

        assert created.plaintext_secret == "1lab_sk_" + "AQEB" * 10 + "AQE"


class TestListAPIKeys:
    """Tests for list_api_keys."""

    @pytest.mark.asyncio
    async def test_list_shows_prefix_only(self, api_key_service: APIKeyService, owner: str):
        """Listing never exposes the secret."""
        created = await api_key_service.create_api_key(owner, "CI Server")

        keys = await api_key_service.list_api_keys(owner)

        assert len(keys) == 1
        assert keys[0].key_id == created.info.key_id
        assert keys[0].prefix == created.info.prefix
        assert created.plaintext_secret not in keys[0].prefix
        assert not hasattr(keys[0], "plaintext_secret")

    @pytest.mark.asyncio
    async def test_list_newest_first_and_scoped(
        self, api_key_service: APIKeyService, owner: str, other_user: str
    ):
        first = await api_key_service.create_api_key(owner, "first")
        second = await api_key_service.create_api_key(owner, "second")
        await api_key_service.create_api_key(other_user, "someone else")

        keys = await api_key_service.list_api_keys(owner)

        assert [k.key_id for k in keys] == [second.info.key_id, first.info.key_id]

    @pytest.mark.asyncio
    async def test_revoked_keys_not_listed(self, api_key_service: APIKeyService, owner: str):
        created = await api_key_service.create_api_key(owner, "temp")
        await api_key_service.revoke_api_key(owner, created.info.key_id)

        assert await api_key_service.list_api_keys(owner) == []


class TestRevokeAPIKey:
    """Tests for revoke_api_key."""

    @pytest.mark.asyncio
    async def test_revoked_key_no_longer_validates(
        self, api_key_service: APIKeyService, owner: str
    ):
        created = await api_key_service.create_api_key(owner, "CI Server")

        await api_key_service.revoke_api_key(owner, created.info.key_id)
        result = await api_key_service.validate_api_key(created.plaintext_secret)

        assert result.valid is False
        assert result.reason == "revoked"

    @pytest.mark.asyncio
    async def test_unknown_key(self, api_key_service: APIKeyService, owner: str):
        with pytest.raises(APIKeyNotFoundError):
            await api_key_service.revoke_api_key(owner, uuid4())

    @pytest.mark.asyncio
    async def test_foreign_key_indistinguishable_from_unknown(
        self, api_key_service: APIKeyService, owner: str, other_user: str
    ):
        """Revoking someone else's key looks exactly like a missing key."""
        created = await api_key_service.create_api_key(other_user, "theirs")

        with pytest.raises(APIKeyNotFoundError):
            await api_key_service.revoke_api_key(owner, created.info.key_id)

        result = await api_key_service.validate_api_key(created.plaintext_secret)
        assert result.valid is True

    @pytest.mark.asyncio
    async def test_double_revoke(self, api_key_service: APIKeyService, owner: str):
        created = await api_key_service.create_api_key(owner, "once")
        await api_key_service.revoke_api_key(owner, created.info.key_id)

        with pytest.raises(APIKeyNotFoundError):
            await api_key_service.revoke_api_key(owner, created.info.key_id)


class TestValidateAPIKey:
    """Tests for validate_api_key."""

    @pytest.mark.asyncio
    async def test_valid_key_resolves_owner(self, api_key_service: APIKeyService, owner: str):
        """The secret resolves to its creator."""
        created = await api_key_service.create_api_key(owner, "CI Server")

        result = await api_key_service.validate_api_key(created.plaintext_secret)

        assert result.valid is True
        assert result.external_id == owner
        assert result.key_id == created.info.key_id

    @pytest.mark.asyncio
    async def test_touch_updates_last_used(self, api_key_service: APIKeyService, owner: str):
        created = await api_key_service.create_api_key(owner, "CI Server")
        assert created.info.last_used_at is None

        await api_key_service.validate_api_key(created.plaintext_secret)
        keys = await api_key_service.list_api_keys(owner)

        assert keys[0].last_used_at is not None

    @pytest.mark.asyncio
    async def test_malformed(self, api_key_service: APIKeyService):
        result = await api_key_service.validate_api_key("not-a-key")

        assert result.valid is False
        assert result.reason == "malformed"
        assert result.external_id is None

    @pytest.mark.asyncio
    async def test_well_formed_but_unknown(self, api_key_service: APIKeyService):
        result = await api_key_service.validate_api_key("1lab_sk_" + "z" * 43)

        assert result.valid is False
        assert result.reason == "unknown"

    @pytest.mark.asyncio
    async def test_touch_failure_does_not_fail_validation(
        self, api_key_service: APIKeyService, storage: MemoryStorage, owner: str, monkeypatch
    ):
        """last_used_at is advisory."""
        created = await api_key_service.create_api_key(owner, "CI Server")

        async def broken_touch(key_id, at):
            raise StorageError("database unavailable")

        monkeypatch.setattr(storage, "touch_api_key", broken_touch)

        result = await api_key_service.validate_api_key(created.plaintext_secret)

        assert result.valid is True
        assert result.external_id == owner
