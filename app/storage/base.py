"""
Storage Protocol - Backend-agnostic persistence contract.

Services depend only on this protocol. Two implementations exist:
SqlStorage (relational database via SQLAlchemy) and MemoryStorage
(process-local stand-in when no persistence is configured).

Every method that changes a balance also appends exactly one
credit transaction, as one atomic unit.
"""

from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

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

# external_ref of the compensating refund for a generation id
REFUND_REF_PREFIX = "refund:"


class Storage(Protocol):
    """
    Persistence capability.

    Any backend must implement this interface with the atomicity guarantees
    described on each method.
    """

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    async def get_profile(self, external_id: str) -> ProfileData | None:
        """Find a profile by identity-provider subject."""
        ...

    async def create_profile(
        self,
        external_id: str,
        email: str | None,
        display_name: str | None,
        initial_credits: int,
        signup_description: str,
    ) -> ProfileData:
        """
        Insert a profile seeded with `initial_credits` and its signup transaction.

        Both rows are written in one atomic unit.

        Raises:
            DuplicateProfileError: A profile with this external id already exists
        """
        ...

    async def set_plan(
        self, external_id: str, plan: Plan, subscription_ref: str | None
    ) -> ProfileData:
        """
        Set the plan (and subscription reference). Does not touch credits.

        Raises:
            ProfileNotFoundError: Profile doesn't exist
        """
        ...

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
        """
        Atomically subtract `amount` iff the balance covers it, appending a usage row.

        The balance check and the decrement are one conditional update.

        Raises:
            ProfileNotFoundError: Profile doesn't exist
            InsufficientCreditsError: Balance below amount (nothing written)
            IdempotencyConflictError: generation_id already has a usage row
        """
        ...

    async def credit(
        self,
        external_id: str,
        amount: int,
        transaction_type: TransactionType,
        description: str | None,
        external_ref: str | None,
    ) -> LedgerEntry:
        """
        Atomically add `amount` and append a transaction of `transaction_type`.

        Raises:
            ProfileNotFoundError: Profile doesn't exist
            IdempotencyConflictError: external_ref was already applied (nothing written)
        """
        ...

    async def list_transactions(self, external_id: str, limit: int) -> list[TransactionData]:
        """Transactions for a profile, newest first. Empty if the profile is absent."""
        ...

    async def find_unrecorded_usage(self, limit: int) -> list[TransactionData]:
        """Usage transactions referencing a generation id with no generation record."""
        ...

    # ------------------------------------------------------------------
    # API keys
    # ------------------------------------------------------------------

    async def insert_api_key(
        self, external_id: str, name: str, key_prefix: str, key_hash: str
    ) -> ApiKeyRecord:
        """
        Persist a new API key for a profile.

        Raises:
            ProfileNotFoundError: Profile doesn't exist
        """
        ...

    async def list_api_keys(self, external_id: str) -> list[ApiKeyRecord]:
        """Non-revoked keys for a profile, newest first."""
        ...

    async def revoke_api_key(self, external_id: str, key_id: UUID, at: datetime) -> bool:
        """
        Set revoked_at iff the key exists, is owned by `external_id` and is active.

        Returns False otherwise, without distinguishing the cases.
        """
        ...

    async def find_api_key_by_hash(self, key_hash: str) -> ApiKeyRecord | None:
        """Look up a key (revoked or not) by its digest."""
        ...

    async def touch_api_key(self, key_id: UUID, at: datetime) -> None:
        """Record last use. Advisory only."""
        ...

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
        """
        Persist a generation under a caller-assigned id.

        Raises:
            ProfileNotFoundError: Profile doesn't exist
        """
        ...

    async def list_generations(
        self, external_id: str, limit: int, tool_type: ToolType | None
    ) -> list[GenerationData]:
        """Generations for a profile, newest first, optionally filtered by tool."""
        ...

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def ping(self) -> bool:
        """Return True if the backend is reachable."""
        ...
