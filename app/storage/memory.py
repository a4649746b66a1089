"""
Memory Storage - Process-local implementation of the Storage protocol.

Used when no database is configured (STORAGE_BACKEND=memory) and in tests.
Every operation runs under a single asyncio.Lock, which makes each
read-modify-write atomic with respect to other coroutines in the process.
Contents are lost on restart.
"""

import asyncio
from dataclasses import replace
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from app.db.models import utc_now
from app.exceptions import (
    DuplicateProfileError,
    IdempotencyConflictError,
    InsufficientCreditsError,
    ProfileNotFoundError,
)
from app.models.domain import (
    ApiKeyRecord,
    GenerationData,
    LedgerEntry,
    Plan,
    ProfileData,
    ToolType,
    TransactionData,
    TransactionType,
)
from app.storage.base import REFUND_REF_PREFIX


class MemoryStorage:
    """Dict-backed storage guarded by one lock."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._profiles: dict[str, ProfileData] = {}
        self._transactions: list[TransactionData] = []
        self._api_keys: dict[UUID, ApiKeyRecord] = {}
        self._generations: dict[UUID, GenerationData] = {}

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    async def get_profile(self, external_id: str) -> ProfileData | None:
        async with self._lock:
            return self._profiles.get(external_id)

    async def create_profile(
        self,
        external_id: str,
        email: str | None,
        display_name: str | None,
        initial_credits: int,
        signup_description: str,
    ) -> ProfileData:
        async with self._lock:
            if external_id in self._profiles:
                raise DuplicateProfileError(external_id)

            now = utc_now()
            profile = ProfileData(
                profile_id=uuid4(),
                external_id=external_id,
                email=email,
                display_name=display_name,
                credits=initial_credits,
                plan=Plan.FREE,
                subscription_ref=None,
                created_at=now,
                updated_at=now,
            )
            self._profiles[external_id] = profile
            if initial_credits > 0:
                self._append_transaction(
                    profile,
                    amount=initial_credits,
                    transaction_type=TransactionType.SIGNUP,
                    description=signup_description,
                )
            return profile

    async def set_plan(
        self, external_id: str, plan: Plan, subscription_ref: str | None
    ) -> ProfileData:
        async with self._lock:
            profile = self._require_profile(external_id)
            updated = replace(
                profile, plan=plan, subscription_ref=subscription_ref, updated_at=utc_now()
            )
            self._profiles[external_id] = updated
            return updated

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    async def debit(
        self,
        external_id: str,
        amount: int,
        tool_type: ToolType,
        generation_id: UUID | None,
        description: str,
    ) -> LedgerEntry:
        async with self._lock:
            profile = self._require_profile(external_id)
            if profile.credits < amount:
                raise InsufficientCreditsError(balance=profile.credits, required=amount)
            if generation_id is not None and any(
                tx.generation_id == generation_id for tx in self._transactions
            ):
                raise IdempotencyConflictError(f"generation {generation_id}")

            updated = replace(profile, credits=profile.credits - amount, updated_at=utc_now())
            self._profiles[external_id] = updated
            transaction = self._append_transaction(
                updated,
                amount=-amount,
                transaction_type=TransactionType.USAGE,
                description=description,
                tool_type=tool_type,
                generation_id=generation_id,
            )
            return LedgerEntry(new_balance=updated.credits, transaction=transaction)

    async def credit(
        self,
        external_id: str,
        amount: int,
        transaction_type: TransactionType,
        description: str | None,
        external_ref: str | None,
    ) -> LedgerEntry:
        async with self._lock:
            profile = self._require_profile(external_id)
            if external_ref is not None and any(
                tx.external_ref == external_ref for tx in self._transactions
            ):
                raise IdempotencyConflictError(external_ref)

            updated = replace(profile, credits=profile.credits + amount, updated_at=utc_now())
            self._profiles[external_id] = updated
            transaction = self._append_transaction(
                updated,
                amount=amount,
                transaction_type=transaction_type,
                description=description,
                external_ref=external_ref,
            )
            return LedgerEntry(new_balance=updated.credits, transaction=transaction)

    async def list_transactions(self, external_id: str, limit: int) -> list[TransactionData]:
        async with self._lock:
            profile = self._profiles.get(external_id)
            if profile is None:
                return []
            owned = [tx for tx in self._transactions if tx.profile_id == profile.profile_id]
            # Appended in order, so reversing gives newest first with stable ties
            return list(reversed(owned))[:limit]

    async def find_unrecorded_usage(self, limit: int) -> list[TransactionData]:
        async with self._lock:
            refunded = {tx.external_ref for tx in self._transactions if tx.external_ref}
            outstanding = [
                tx
                for tx in self._transactions
                if tx.transaction_type == TransactionType.USAGE
                and tx.generation_id is not None
                and tx.generation_id not in self._generations
                and f"{REFUND_REF_PREFIX}{tx.generation_id}" not in refunded
            ]
            return outstanding[:limit]

    # ------------------------------------------------------------------
    # API keys
    # ------------------------------------------------------------------

    async def insert_api_key(
        self, external_id: str, name: str, key_prefix: str, key_hash: str
    ) -> ApiKeyRecord:
        async with self._lock:
            profile = self._require_profile(external_id)
            record = ApiKeyRecord(
                key_id=uuid4(),
                profile_id=profile.profile_id,
                external_id=external_id,
                name=name,
                key_prefix=key_prefix,
                key_hash=key_hash,
                created_at=utc_now(),
                last_used_at=None,
                revoked_at=None,
            )
            self._api_keys[record.key_id] = record
            return record

    async def list_api_keys(self, external_id: str) -> list[ApiKeyRecord]:
        async with self._lock:
            active = [
                record
                for record in self._api_keys.values()
                if record.external_id == external_id and not record.is_revoked
            ]
            # dict preserves insertion order: reverse for newest first
            return list(reversed(active))

    async def revoke_api_key(self, external_id: str, key_id: UUID, at: datetime) -> bool:
        async with self._lock:
            record = self._api_keys.get(key_id)
            if record is None or record.external_id != external_id or record.is_revoked:
                return False
            self._api_keys[key_id] = replace(record, revoked_at=at)
            return True

    async def find_api_key_by_hash(self, key_hash: str) -> ApiKeyRecord | None:
        async with self._lock:
            for record in self._api_keys.values():
                if record.key_hash == key_hash:
                    return record
            return None

    async def touch_api_key(self, key_id: UUID, at: datetime) -> None:
        async with self._lock:
            record = self._api_keys.get(key_id)
            if record is not None:
                self._api_keys[key_id] = replace(record, last_used_at=at)

    # ------------------------------------------------------------------
    # Generations
    # ------------------------------------------------------------------

    async def insert_generation(
        self,
        external_id: str,
        generation_id: UUID,
        tool_type: ToolType,
        title: str | None,
        input_document: dict[str, Any],
        output_document: dict[str, Any],
        credits_used: int,
    ) -> GenerationData:
        async with self._lock:
            profile = self._require_profile(external_id)
            if generation_id in self._generations:
                raise IdempotencyConflictError(f"generation {generation_id}")
            generation = GenerationData(
                generation_id=generation_id,
                profile_id=profile.profile_id,
                tool_type=tool_type,
                title=title,
                input=input_document,
                output=output_document,
                credits_used=credits_used,
                created_at=utc_now(),
            )
            self._generations[generation_id] = generation
            return generation

    async def list_generations(
        self, external_id: str, limit: int, tool_type: ToolType | None
    ) -> list[GenerationData]:
        async with self._lock:
            profile = self._profiles.get(external_id)
            if profile is None:
                return []
            owned = [
                generation
                for generation in self._generations.values()
                if generation.profile_id == profile.profile_id
                and (tool_type is None or generation.tool_type == tool_type)
            ]
            return list(reversed(owned))[:limit]

    async def ping(self) -> bool:
        return True

    # ------------------------------------------------------------------
    # Private helpers (caller holds the lock)
    # ------------------------------------------------------------------

    def _require_profile(self, external_id: str) -> ProfileData:
        profile = self._profiles.get(external_id)
        if profile is None:
            raise ProfileNotFoundError(external_id)
        return profile

    def _append_transaction(
        self,
        profile: ProfileData,
        amount: int,
        transaction_type: TransactionType,
        description: str | None,
        tool_type: ToolType | None = None,
        generation_id: UUID | None = None,
        external_ref: str | None = None,
    ) -> TransactionData:
        transaction = TransactionData(
            transaction_id=uuid4(),
            profile_id=profile.profile_id,
            amount=amount,
            transaction_type=transaction_type,
            description=description,
            tool_type=tool_type,
            generation_id=generation_id,
            external_ref=external_ref,
            created_at=utc_now(),
        )
        self._transactions.append(transaction)
        return transaction
