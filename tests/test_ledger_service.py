"""
Tests for LedgerService.

Covers profile creation, debits, credits, plan changes and the balance
invariants under concurrency.
"""

import asyncio
from uuid import uuid4

import pytest

from app.config import ToolPriceTable
from app.exceptions import IdempotencyConflictError, InputValidationError, ProfileNotFoundError
from app.models.domain import Plan, ToolType, TransactionType
from app.services.ledger import SIGNUP_DESCRIPTION, LedgerService
from app.storage.memory import MemoryStorage


async def balance_from_transactions(ledger: LedgerService, external_id: str) -> int:
    transactions = await ledger.transaction_history(external_id, 10_000)
    return sum(tx.amount for tx in transactions)


async def drain_to(ledger: LedgerService, external_id: str, target: int) -> None:
    """Spend credits with single-credit debits until the balance is `target`."""
    balance = await ledger.get_balance(external_id)
    for _ in range(balance - target):
        result = await ledger.debit(external_id, 1, ToolType.ROADMAP)
        assert result.success


class TestGetOrCreateProfile:
    """Tests for get_or_create_profile."""

    @pytest.mark.asyncio
    async def test_new_user_gets_signup_bonus(self, ledger: LedgerService):
        """A new profile starts at 25 with one signup transaction of +25."""
        profile = await ledger.get_or_create_profile("user_a", "a@example.com", "Ada")

        assert profile.credits == 25
        assert profile.plan == Plan.FREE
        assert profile.email == "a@example.com"
        assert profile.display_name == "Ada"

        transactions = await ledger.transaction_history("user_a", 10)
        assert len(transactions) == 1
        assert transactions[0].transaction_type == TransactionType.SIGNUP
        assert transactions[0].amount == 25
        assert transactions[0].description == SIGNUP_DESCRIPTION

    @pytest.mark.asyncio
    async def test_existing_profile_returned_unchanged(self, ledger: LedgerService):
        first = await ledger.get_or_create_profile("user_a")
        second = await ledger.get_or_create_profile("user_a", "new@example.com")

        assert second.profile_id == first.profile_id
        assert second.email is None
        assert len(await ledger.transaction_history("user_a", 10)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_first_access_creates_one_profile(self, ledger: LedgerService):
        """Racing first accesses converge on one profile with one signup row."""
        profiles = await asyncio.gather(
            *[ledger.get_or_create_profile("user_race") for _ in range(10)]
        )

        assert len({p.profile_id for p in profiles}) == 1
        transactions = await ledger.transaction_history("user_race", 100)
        assert [tx.transaction_type for tx in transactions] == [TransactionType.SIGNUP]
        assert await ledger.get_balance("user_race") == 25

    @pytest.mark.asyncio
    async def test_zero_initial_credits_has_no_signup_row(
        self, storage: MemoryStorage, price_table: ToolPriceTable
    ):
        ledger = LedgerService(storage, price_table, initial_credits=0)

        profile = await ledger.get_or_create_profile("user_zero")

        assert profile.credits == 0
        assert await ledger.transaction_history("user_zero", 10) == []


class TestDebit:
    """Tests for debit."""

    @pytest.mark.asyncio
    async def test_insufficient_credits(self, ledger: LedgerService):
        """A failing debit leaves balance and history untouched."""
        await ledger.get_or_create_profile("user_b")
        await drain_to(ledger, "user_b", 5)
        history_before = await ledger.transaction_history("user_b", 1000)

        result = await ledger.debit("user_b", 10, ToolType.PRD)

        assert result.success is False
        assert result.new_balance == 5
        assert "Insufficient credits" in (result.error or "")
        assert await ledger.get_balance("user_b") == 5
        assert len(await ledger.transaction_history("user_b", 1000)) == len(history_before)

    @pytest.mark.asyncio
    async def test_successful_debit_appends_usage(self, ledger: LedgerService):
        await ledger.get_or_create_profile("user_c")
        generation_id = uuid4()

        result = await ledger.debit("user_c", 5, ToolType.ROADMAP, generation_id)

        assert result.success is True
        assert result.new_balance == 20
        assert result.transaction is not None
        assert result.transaction.amount == -5
        assert result.transaction.transaction_type == TransactionType.USAGE
        assert result.transaction.tool_type == ToolType.ROADMAP
        assert result.transaction.generation_id == generation_id
        assert result.transaction.description == "Used roadmap tool"

    @pytest.mark.asyncio
    async def test_debit_to_exactly_zero(self, ledger: LedgerService):
        await ledger.get_or_create_profile("user_c")

        result = await ledger.debit("user_c", 25, ToolType.PITCH_DECK)

        assert result.success is True
        assert result.new_balance == 0

    @pytest.mark.asyncio
    async def test_unknown_profile(self, ledger: LedgerService):
        result = await ledger.debit("ghost", 5, ToolType.ROADMAP)

        assert result.success is False
        assert result.new_balance == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("cost", [0, -5])
    async def test_non_positive_cost_rejected(self, ledger: LedgerService, cost: int):
        await ledger.get_or_create_profile("user_c")

        with pytest.raises(InputValidationError):
            await ledger.debit("user_c", cost, ToolType.ROADMAP)

    @pytest.mark.asyncio
    async def test_generation_id_debited_at_most_once(self, ledger: LedgerService):
        await ledger.get_or_create_profile("user_c")
        generation_id = uuid4()
        await ledger.debit("user_c", 5, ToolType.ROADMAP, generation_id)

        with pytest.raises(IdempotencyConflictError):
            await ledger.debit("user_c", 5, ToolType.ROADMAP, generation_id)

        assert await ledger.get_balance("user_c") == 20

    @pytest.mark.asyncio
    async def test_concurrent_debits_never_overdraw(self, ledger: LedgerService):
        """Balance 20, two concurrent debits of 15, exactly one wins."""
        await ledger.get_or_create_profile("user_d")
        await drain_to(ledger, "user_d", 20)

        results = await asyncio.gather(
            ledger.debit("user_d", 15, ToolType.PITCH_DECK),
            ledger.debit("user_d", 15, ToolType.PITCH_DECK),
        )

        assert sorted(r.success for r in results) == [False, True]
        assert await ledger.get_balance("user_d") == 5
        failed = next(r for r in results if not r.success)
        assert failed.new_balance == 5

    @pytest.mark.asyncio
    async def test_many_concurrent_debits(self, ledger: LedgerService):
        await ledger.get_or_create_profile("user_d")

        results = await asyncio.gather(
            *[ledger.debit("user_d", 3, ToolType.ROADMAP) for _ in range(20)]
        )

        assert sum(r.success for r in results) == 8  # 25 // 3
        assert await ledger.get_balance("user_d") == 1
        assert await balance_from_transactions(ledger, "user_d") == 1


class TestCredit:
    """Tests for credit."""

    @pytest.mark.asyncio
    async def test_purchase_adds_credits(self, ledger: LedgerService):
        await ledger.get_or_create_profile("user_e")

        result = await ledger.credit(
            "user_e", 100, TransactionType.PURCHASE, "Purchased 100 Credits", "cs_test_1"
        )

        assert result.success is True
        assert result.new_balance == 125
        assert result.transaction is not None
        assert result.transaction.external_ref == "cs_test_1"

    @pytest.mark.asyncio
    async def test_external_ref_applied_once(self, ledger: LedgerService):
        await ledger.get_or_create_profile("user_e")
        await ledger.credit("user_e", 100, TransactionType.PURCHASE, external_ref="cs_test_1")

        with pytest.raises(IdempotencyConflictError):
            await ledger.credit("user_e", 100, TransactionType.PURCHASE, external_ref="cs_test_1")

        assert await ledger.get_balance("user_e") == 125

    @pytest.mark.asyncio
    @pytest.mark.parametrize("transaction_type", [TransactionType.USAGE, TransactionType.SIGNUP])
    async def test_non_credit_types_rejected(
        self, ledger: LedgerService, transaction_type: TransactionType
    ):
        await ledger.get_or_create_profile("user_e")

        with pytest.raises(InputValidationError):
            await ledger.credit("user_e", 10, transaction_type)

    @pytest.mark.asyncio
    async def test_non_positive_amount_rejected(self, ledger: LedgerService):
        await ledger.get_or_create_profile("user_e")

        with pytest.raises(InputValidationError):
            await ledger.credit("user_e", 0, TransactionType.BONUS)

    @pytest.mark.asyncio
    async def test_unknown_profile(self, ledger: LedgerService):
        result = await ledger.credit("ghost", 10, TransactionType.BONUS)

        assert result.success is False


class TestPlansAndHistory:
    """Tests for update_plan, get_balance and transaction_history."""

    @pytest.mark.asyncio
    async def test_update_plan_keeps_credits(self, ledger: LedgerService):
        await ledger.get_or_create_profile("user_f")

        profile = await ledger.update_plan("user_f", Plan.UNLIMITED, "sub_123")

        assert profile.plan == Plan.UNLIMITED
        assert profile.subscription_ref == "sub_123"
        assert profile.credits == 25

        profile = await ledger.update_plan("user_f", Plan.FREE, None)
        assert profile.plan == Plan.FREE
        assert profile.subscription_ref is None

    @pytest.mark.asyncio
    async def test_update_plan_unknown_profile(self, ledger: LedgerService):
        with pytest.raises(ProfileNotFoundError):
            await ledger.update_plan("ghost", Plan.UNLIMITED)

    @pytest.mark.asyncio
    async def test_balance_of_unknown_user_is_zero(self, ledger: LedgerService):
        assert await ledger.get_balance("ghost") == 0
        assert await ledger.has_sufficient_balance("ghost", 1) is False

    @pytest.mark.asyncio
    async def test_history_newest_first_with_limit(self, ledger: LedgerService):
        await ledger.get_or_create_profile("user_f")
        await ledger.debit("user_f", 5, ToolType.ROADMAP)
        await ledger.credit("user_f", 7, TransactionType.BONUS)

        history = await ledger.transaction_history("user_f", 2)

        assert [tx.amount for tx in history] == [7, -5]

    @pytest.mark.asyncio
    async def test_balance_equals_sum_of_transactions(self, ledger: LedgerService):
        await ledger.get_or_create_profile("user_f")
        await ledger.debit("user_f", 5, ToolType.ROADMAP)
        await ledger.credit("user_f", 100, TransactionType.PURCHASE, external_ref="cs_1")
        await ledger.debit("user_f", 15, ToolType.PITCH_DECK)
        await ledger.credit("user_f", 15, TransactionType.REFUND, external_ref="refund:x")

        assert await ledger.get_balance("user_f") == 120
        assert await balance_from_transactions(ledger, "user_f") == 120

    def test_cost_of_uses_price_table(self, ledger: LedgerService):
        assert ledger.cost_of(ToolType.ROADMAP) == 5
        assert ledger.cost_of(ToolType.PITCH_DECK) == 15
