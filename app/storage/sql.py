"""
SQL Storage - Relational implementation of the Storage protocol.

Balance mutations are single conditional UPDATE ... RETURNING statements
followed by the transaction insert, committed together. A failure anywhere
rolls back the whole unit, so credits never change without their audit row.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import APIKey, CreditTransaction, Generation, UserProfile, utc_now
from app.exceptions import (
    DuplicateProfileError,
    IdempotencyConflictError,
    InsufficientCreditsError,
    ProfileNotFoundError,
    StorageError,
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

logger = get_logger(__name__)


class SqlStorage:
    """Storage backed by a SQLAlchemy async session (one per request)."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize SQL storage with database session."""
        self.session = session

    # ========================================================================
    # Profiles
    # ========================================================================

    async def get_profile(self, external_id: str) -> ProfileData | None:
        try:
            profile = await self._find_profile(external_id)
        except SQLAlchemyError as exc:
            raise StorageError(f"profile lookup failed: {type(exc).__name__}") from exc
        return self._profile_to_domain(profile) if profile else None

    async def create_profile(
        self,
        external_id: str,
        email: str | None,
        display_name: str | None,
        initial_credits: int,
        signup_description: str,
    ) -> ProfileData:
        profile = UserProfile(
            external_id=external_id,
            email=email,
            display_name=display_name,
            credits=initial_credits,
            plan=Plan.FREE.value,
        )
        self.session.add(profile)

        try:
            await self.session.flush()
            if initial_credits > 0:
                self.session.add(
                    CreditTransaction(
                        user_id=profile.id,
                        amount=initial_credits,
                        type=TransactionType.SIGNUP.value,
                        description=signup_description,
                    )
                )
                await self.session.flush()
            await self.session.commit()
        except IntegrityError as exc:
            # Race condition - profile created by another request
            await self.session.rollback()
            logger.info("profile_insert_lost_race", external_id=external_id)
            raise DuplicateProfileError(external_id) from exc
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise StorageError(f"profile creation failed: {type(exc).__name__}") from exc

        return self._profile_to_domain(profile)

    async def set_plan(
        self, external_id: str, plan: Plan, subscription_ref: str | None
    ) -> ProfileData:
        try:
            profile = await self._find_profile(external_id)
            if profile is None:
                raise ProfileNotFoundError(external_id)
            profile.plan = plan.value
            profile.stripe_subscription_id = subscription_ref
            await self.session.flush()
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise StorageError(f"plan update failed: {type(exc).__name__}") from exc
        return self._profile_to_domain(profile)

    # ========================================================================
    # Ledger
    # ========================================================================

    async def debit(
        self,
        external_id: str,
        amount: int,
        tool_type: ToolType,
        generation_id: UUID | None,
        description: str,
    ) -> LedgerEntry:
        # Compare-and-swap: the balance check and the decrement are one statement
        stmt = (
            update(UserProfile)
            .where(UserProfile.external_id == external_id, UserProfile.credits >= amount)
            .values(credits=UserProfile.credits - amount, updated_at=utc_now())
            .returning(UserProfile.id, UserProfile.credits)
            .execution_options(synchronize_session=False)
        )

        try:
            row = (await self.session.execute(stmt)).one_or_none()
            if row is None:
                await self.session.rollback()
                profile = await self._find_profile(external_id)
                if profile is None:
                    raise ProfileNotFoundError(external_id)
                raise InsufficientCreditsError(balance=profile.credits, required=amount)

            profile_id, new_balance = row
            transaction = CreditTransaction(
                user_id=profile_id,
                amount=-amount,
                type=TransactionType.USAGE.value,
                description=description,
                tool_type=tool_type.value,
                generation_id=generation_id,
            )
            self.session.add(transaction)
            await self.session.flush()
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            raise IdempotencyConflictError(f"generation {generation_id}") from exc
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise StorageError(f"debit failed: {type(exc).__name__}") from exc

        return LedgerEntry(
            new_balance=new_balance, transaction=self._transaction_to_domain(transaction)
        )

    async def credit(
        self,
        external_id: str,
        amount: int,
        transaction_type: TransactionType,
        description: str | None,
        external_ref: str | None,
    ) -> LedgerEntry:
        stmt = (
            update(UserProfile)
            .where(UserProfile.external_id == external_id)
            .values(credits=UserProfile.credits + amount, updated_at=utc_now())
            .returning(UserProfile.id, UserProfile.credits)
            .execution_options(synchronize_session=False)
        )

        try:
            if external_ref is not None and await self._find_by_external_ref(external_ref):
                raise IdempotencyConflictError(external_ref)

            row = (await self.session.execute(stmt)).one_or_none()
            if row is None:
                await self.session.rollback()
                raise ProfileNotFoundError(external_id)

            profile_id, new_balance = row
            transaction = CreditTransaction(
                user_id=profile_id,
                amount=amount,
                type=transaction_type.value,
                description=description,
                external_ref=external_ref,
            )
            self.session.add(transaction)
            await self.session.flush()
            await self.session.commit()
        except IntegrityError as exc:
            # Concurrent delivery of the same external reference
            await self.session.rollback()
            raise IdempotencyConflictError(external_ref or "unknown") from exc
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise StorageError(f"credit failed: {type(exc).__name__}") from exc

        return LedgerEntry(
            new_balance=new_balance, transaction=self._transaction_to_domain(transaction)
        )

    async def list_transactions(self, external_id: str, limit: int) -> list[TransactionData]:
        stmt = (
            select(CreditTransaction)
            .join(UserProfile, CreditTransaction.user_id == UserProfile.id)
            .where(UserProfile.external_id == external_id)
            .order_by(CreditTransaction.created_at.desc())
            .limit(limit)
        )
        try:
            rows = (await self.session.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            raise StorageError(f"transaction listing failed: {type(exc).__name__}") from exc
        return [self._transaction_to_domain(row) for row in rows]

    async def find_unrecorded_usage(self, limit: int) -> list[TransactionData]:
        stmt = (
            select(CreditTransaction)
            .outerjoin(Generation, Generation.id == CreditTransaction.generation_id)
            .where(
                CreditTransaction.type == TransactionType.USAGE.value,
                CreditTransaction.generation_id.is_not(None),
                Generation.id.is_(None),
            )
            .order_by(CreditTransaction.created_at.asc())
            .limit(limit)
        )
        try:
            rows = (await self.session.execute(stmt)).scalars().all()
            if not rows:
                return []
            # Usage rows already compensated by a refund are not outstanding
            refund_refs = [f"{REFUND_REF_PREFIX}{row.generation_id}" for row in rows]
            refunded = set(
                (
                    await self.session.execute(
                        select(CreditTransaction.external_ref).where(
                            CreditTransaction.external_ref.in_(refund_refs)
                        )
                    )
                )
                .scalars()
                .all()
            )
        except SQLAlchemyError as exc:
            raise StorageError(f"reconciliation query failed: {type(exc).__name__}") from exc

        return [
            self._transaction_to_domain(row)
            for row in rows
            if f"{REFUND_REF_PREFIX}{row.generation_id}" not in refunded
        ]

    # ========================================================================
    # API keys
    # ========================================================================

    async def insert_api_key(
        self, external_id: str, name: str, key_prefix: str, key_hash: str
    ) -> ApiKeyRecord:
        try:
            profile = await self._find_profile(external_id)
            if profile is None:
                raise ProfileNotFoundError(external_id)

            api_key = APIKey(
                user_id=profile.id,
                name=name,
                key_prefix=key_prefix,
                key_hash=key_hash,
            )
            self.session.add(api_key)
            await self.session.flush()
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise StorageError(f"api key insert failed: {type(exc).__name__}") from exc

        return self._api_key_to_domain(api_key, external_id)

    async def list_api_keys(self, external_id: str) -> list[ApiKeyRecord]:
        stmt = (
            select(APIKey)
            .join(UserProfile, APIKey.user_id == UserProfile.id)
            .where(UserProfile.external_id == external_id, APIKey.revoked_at.is_(None))
            .order_by(APIKey.created_at.desc())
        )
        try:
            rows = (await self.session.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            raise StorageError(f"api key listing failed: {type(exc).__name__}") from exc
        return [self._api_key_to_domain(row, external_id) for row in rows]

    async def revoke_api_key(self, external_id: str, key_id: UUID, at: datetime) -> bool:
        owner_id = (
            select(UserProfile.id).where(UserProfile.external_id == external_id).scalar_subquery()
        )
        stmt = (
            update(APIKey)
            .where(
                APIKey.id == key_id,
                APIKey.user_id == owner_id,
                APIKey.revoked_at.is_(None),
            )
            .values(revoked_at=at)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise StorageError(f"api key revoke failed: {type(exc).__name__}") from exc
        return result.rowcount == 1

    async def find_api_key_by_hash(self, key_hash: str) -> ApiKeyRecord | None:
        stmt = (
            select(APIKey, UserProfile.external_id)
            .join(UserProfile, APIKey.user_id == UserProfile.id)
            .where(APIKey.key_hash == key_hash)
            .execution_options(populate_existing=True)
        )
        try:
            row = (await self.session.execute(stmt)).one_or_none()
        except SQLAlchemyError as exc:
            raise StorageError(f"api key lookup failed: {type(exc).__name__}") from exc
        if row is None:
            return None
        api_key, external_id = row
        return self._api_key_to_domain(api_key, external_id)

    async def touch_api_key(self, key_id: UUID, at: datetime) -> None:
        stmt = (
            update(APIKey)
            .where(APIKey.id == key_id)
            .values(last_used_at=at)
            .execution_options(synchronize_session=False)
        )
        try:
            await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise StorageError(f"api key touch failed: {type(exc).__name__}") from exc

    # ========================================================================
    # Generations
    # ========================================================================

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
        try:
            profile = await self._find_profile(external_id)
            if profile is None:
                raise ProfileNotFoundError(external_id)

            generation = Generation(
                id=generation_id,
                user_id=profile.id,
                tool_type=tool_type.value,
                title=title,
                input=input_document,
                output=output_document,
                credits_used=credits_used,
            )
            self.session.add(generation)
            await self.session.flush()
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            raise IdempotencyConflictError(f"generation {generation_id}") from exc
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise StorageError(f"generation insert failed: {type(exc).__name__}") from exc

        return self._generation_to_domain(generation)

    async def list_generations(
        self, external_id: str, limit: int, tool_type: ToolType | None
    ) -> list[GenerationData]:
        stmt = (
            select(Generation)
            .join(UserProfile, Generation.user_id == UserProfile.id)
            .where(UserProfile.external_id == external_id)
        )
        if tool_type is not None:
            stmt = stmt.where(Generation.tool_type == tool_type.value)
        stmt = stmt.order_by(Generation.created_at.desc()).limit(limit)

        try:
            rows = (await self.session.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            raise StorageError(f"generation listing failed: {type(exc).__name__}") from exc
        return [self._generation_to_domain(row) for row in rows]

    # ========================================================================
    # Health
    # ========================================================================

    async def ping(self) -> bool:
        try:
            await self.session.execute(select(1))
        except SQLAlchemyError as exc:
            logger.warning("storage_ping_failed", error=type(exc).__name__)
            return False
        return True

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _find_profile(self, external_id: str) -> UserProfile | None:
        """Find profile by identity-provider subject."""
        # Balance updates bypass the identity map, so reads refresh loaded rows
        stmt = (
            select(UserProfile)
            .where(UserProfile.external_id == external_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _find_by_external_ref(self, external_ref: str) -> CreditTransaction | None:
        """Find a transaction by its external reference."""
        stmt = select(CreditTransaction).where(CreditTransaction.external_ref == external_ref)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    def _profile_to_domain(profile: UserProfile) -> ProfileData:
        """Convert ORM profile to domain model."""
        return ProfileData(
            profile_id=profile.id,
            external_id=profile.external_id,
            email=profile.email,
            display_name=profile.display_name,
            credits=profile.credits,
            plan=Plan(profile.plan),
            subscription_ref=profile.stripe_subscription_id,
            created_at=profile.created_at,
            updated_at=profile.updated_at,
        )

    @staticmethod
    def _transaction_to_domain(transaction: CreditTransaction) -> TransactionData:
        """Convert ORM transaction to domain model."""
        return TransactionData(
            transaction_id=transaction.id,
            profile_id=transaction.user_id,
            amount=transaction.amount,
            transaction_type=TransactionType(transaction.type),
            description=transaction.description,
            tool_type=ToolType(transaction.tool_type) if transaction.tool_type else None,
            generation_id=transaction.generation_id,
            external_ref=transaction.external_ref,
            created_at=transaction.created_at,
        )

    @staticmethod
    def _api_key_to_domain(api_key: APIKey, external_id: str) -> ApiKeyRecord:
        """Convert ORM API key to domain model."""
        return ApiKeyRecord(
            key_id=api_key.id,
            profile_id=api_key.user_id,
            external_id=external_id,
            name=api_key.name,
            key_prefix=api_key.key_prefix,
            key_hash=api_key.key_hash,
            created_at=api_key.created_at,
            last_used_at=api_key.last_used_at,
            revoked_at=api_key.revoked_at,
        )

    @staticmethod
    def _generation_to_domain(generation: Generation) -> GenerationData:
        """Convert ORM generation to domain model."""
        return GenerationData(
            generation_id=generation.id,
            profile_id=generation.user_id,
            tool_type=ToolType(generation.tool_type),
            title=generation.title,
            input=generation.input,
            output=generation.output,
            credits_used=generation.credits_used,
            created_at=generation.created_at,
        )
