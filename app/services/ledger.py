"""
Ledger Service - Profiles, balances and the credit transaction log.

NO DICTIONARIES - All operations use strongly typed domain models.

Every balance mutation goes through a single atomic storage operation that
also appends the matching transaction, so for every profile
credits == sum(transaction amounts) at all times.
"""

from uuid import UUID

from structlog import get_logger

from app.config import ToolPriceTable
from app.exceptions import (
    DuplicateProfileError,
    InputValidationError,
    InsufficientCreditsError,
    ProfileNotFoundError,
    StorageError,
)
from app.models.domain import (
    CREDIT_TRANSACTION_TYPES,
    LedgerResult,
    Plan,
    ProfileData,
    ToolType,
    TransactionData,
    TransactionType,
)
from app.observability.metrics import metrics
from app.storage.base import Storage

logger = get_logger(__name__)

SIGNUP_DESCRIPTION = "Welcome bonus - free credits"


class LedgerService:
    """
    Credit ledger over a Storage backend.

    Business failures on debit/credit (insufficient balance, unknown profile)
    come back as an unsuccessful LedgerResult; storage failures raise.
    """

    def __init__(
        self, storage: Storage, price_table: ToolPriceTable, initial_credits: int
    ) -> None:
        self.storage = storage
        self.price_table = price_table
        self.initial_credits = initial_credits

    async def get_or_create_profile(
        self,
        external_id: str,
        email: str | None = None,
        display_name: str | None = None,
    ) -> ProfileData:
        """
        Get existing profile or create one seeded with the signup bonus.

        Concurrent first accesses for the same external id converge on a
        single profile with a single signup transaction.
        """
        profile = await self.storage.get_profile(external_id)
        if profile is not None:
            return profile

        try:
            profile = await self.storage.create_profile(
                external_id=external_id,
                email=email,
                display_name=display_name,
                initial_credits=self.initial_credits,
                signup_description=SIGNUP_DESCRIPTION,
            )
        except DuplicateProfileError:
            # Race condition - profile created by another request
            existing = await self.storage.get_profile(external_id)
            if existing is None:
                raise StorageError(f"profile {external_id} vanished after duplicate insert")
            return existing

        metrics.profiles_created_total.inc()
        logger.info(
            "profile_created",
            external_id=external_id,
            profile_id=str(profile.profile_id),
            initial_credits=self.initial_credits,
        )
        return profile

    async def get_balance(self, external_id: str) -> int:
        """Current balance, 0 if the profile doesn't exist."""
        profile = await self.storage.get_profile(external_id)
        return profile.credits if profile else 0

    async def has_sufficient_balance(self, external_id: str, cost: int) -> bool:
        """Advisory pre-check. The debit itself re-checks atomically."""
        return await self.get_balance(external_id) >= cost

    def cost_of(self, tool_type: ToolType) -> int:
        """Credit cost for one invocation of a tool."""
        return self.price_table.cost_of(tool_type)

    async def debit(
        self,
        external_id: str,
        cost: int,
        tool_type: ToolType,
        generation_id: UUID | None = None,
    ) -> LedgerResult:
        """
        Atomically deduct `cost` if the balance covers it.

        Raises:
            InputValidationError: Non-positive cost
            IdempotencyConflictError: generation_id already debited
            StorageError: Persistence failure (nothing written)
        """
        if cost <= 0:
            raise InputValidationError(f"Debit amount must be positive: {cost}")

        try:
            entry = await self.storage.debit(
                external_id=external_id,
                amount=cost,
                tool_type=tool_type,
                generation_id=generation_id,
                description=f"Used {tool_type.value} tool",
            )
        except InsufficientCreditsError as exc:
            metrics.record_debit(tool_type.value, "insufficient_credits")
            logger.info(
                "debit_rejected_insufficient_credits",
                external_id=external_id,
                tool_type=tool_type.value,
                cost=cost,
                balance=exc.balance,
            )
            return LedgerResult(success=False, new_balance=exc.balance, error=str(exc))
        except ProfileNotFoundError as exc:
            metrics.record_debit(tool_type.value, "profile_not_found")
            logger.warning("debit_profile_not_found", external_id=external_id, cost=cost)
            return LedgerResult(success=False, new_balance=0, error=str(exc))

        metrics.record_debit(tool_type.value, "success", cost)
        logger.info(
            "credits_debited",
            external_id=external_id,
            tool_type=tool_type.value,
            cost=cost,
            new_balance=entry.new_balance,
            generation_id=str(generation_id) if generation_id else None,
        )
        return LedgerResult(
            success=True, new_balance=entry.new_balance, transaction=entry.transaction
        )

    async def credit(
        self,
        external_id: str,
        amount: int,
        transaction_type: TransactionType,
        description: str | None = None,
        external_ref: str | None = None,
    ) -> LedgerResult:
        """
        Add credits (purchase, bonus or refund).

        Raises:
            InputValidationError: Non-positive amount or non-credit type
            IdempotencyConflictError: external_ref already applied
            StorageError: Persistence failure (nothing written)
        """
        if amount <= 0:
            raise InputValidationError(f"Credit amount must be positive: {amount}")
        if transaction_type not in CREDIT_TRANSACTION_TYPES:
            raise InputValidationError(
                f"Transaction type {transaction_type.value} cannot add credits"
            )

        try:
            entry = await self.storage.credit(
                external_id=external_id,
                amount=amount,
                transaction_type=transaction_type,
                description=description,
                external_ref=external_ref,
            )
        except ProfileNotFoundError as exc:
            logger.warning("credit_profile_not_found", external_id=external_id, amount=amount)
            return LedgerResult(success=False, new_balance=0, error=str(exc))

        metrics.record_credit_addition(transaction_type.value, amount)
        logger.info(
            "credits_added",
            external_id=external_id,
            amount=amount,
            transaction_type=transaction_type.value,
            new_balance=entry.new_balance,
            external_ref=external_ref,
        )
        return LedgerResult(
            success=True, new_balance=entry.new_balance, transaction=entry.transaction
        )

    async def update_plan(
        self, external_id: str, plan: Plan, subscription_ref: str | None = None
    ) -> ProfileData:
        """
        Set the profile's plan. Idempotent; never touches credits.

        Raises:
            ProfileNotFoundError: Profile doesn't exist
        """
        profile = await self.storage.set_plan(external_id, plan, subscription_ref)
        logger.info(
            "plan_updated",
            external_id=external_id,
            plan=plan.value,
            subscription_ref=subscription_ref,
        )
        return profile

    async def transaction_history(self, external_id: str, limit: int) -> list[TransactionData]:
        """Transactions for a profile, newest first."""
        return await self.storage.list_transactions(external_id, max(limit, 0))
