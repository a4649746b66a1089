"""
Hypothesis Property-Based Tests for the ledger.

Random sequences of debits and credits must never break the two ledger
invariants: the balance is never negative, and it always equals the sum of
the profile's transactions.
"""

import asyncio
from dataclasses import dataclass

from hypothesis import given, settings
from hypothesis import strategies as st

from app.config import DEFAULT_TOOL_COSTS, ToolPriceTable
from app.models.domain import ToolType, TransactionType
from app.services.ledger import LedgerService
from app.storage.memory import MemoryStorage

# ============================================================================
# Hypothesis Strategies
# ============================================================================

tool_types = st.sampled_from(list(ToolType))
credit_types = st.sampled_from(
    [TransactionType.PURCHASE, TransactionType.BONUS, TransactionType.REFUND]
)
positive_amounts = st.integers(min_value=1, max_value=200)
initial_credits = st.integers(min_value=0, max_value=100)


@dataclass(frozen=True)
class DebitOp:
    tool_type: ToolType
    amount: int


@dataclass(frozen=True)
class CreditOp:
    transaction_type: TransactionType
    amount: int


ledger_ops = st.lists(
    st.one_of(
        st.builds(DebitOp, tool_types, positive_amounts),
        st.builds(CreditOp, credit_types, positive_amounts),
    ),
    max_size=30,
)


def _new_ledger(initial: int) -> LedgerService:
    return LedgerService(MemoryStorage(), ToolPriceTable(DEFAULT_TOOL_COSTS), initial)


async def _apply(ledger: LedgerService, ops: list[DebitOp | CreditOp]) -> tuple[int, int]:
    await ledger.get_or_create_profile("prop_user")
    for op in ops:
        if isinstance(op, DebitOp):
            await ledger.debit("prop_user", op.amount, op.tool_type)
        else:
            await ledger.credit("prop_user", op.amount, op.transaction_type)
    balance = await ledger.get_balance("prop_user")
    history = await ledger.transaction_history("prop_user", 10_000)
    return balance, sum(tx.amount for tx in history)


async def _concurrent_debits(ledger: LedgerService, amounts: list[int]) -> tuple[int, int, int]:
    await ledger.get_or_create_profile("prop_user")
    results = await asyncio.gather(
        *[ledger.debit("prop_user", amount, ToolType.ROADMAP) for amount in amounts]
    )
    spent = sum(amount for amount, r in zip(amounts, results, strict=True) if r.success)
    balance = await ledger.get_balance("prop_user")
    history = await ledger.transaction_history("prop_user", 10_000)
    return spent, balance, sum(tx.amount for tx in history)


class TestLedgerInvariants:
    """Balance invariants over arbitrary operation sequences."""

    @given(initial_credits, ledger_ops)
    @settings(max_examples=100, deadline=None)
    def test_balance_equals_transaction_sum(self, initial, ops):
        balance, total = asyncio.run(_apply(_new_ledger(initial), ops))

        assert balance >= 0
        assert balance == total

    @given(initial_credits, st.lists(positive_amounts, min_size=1, max_size=15))
    @settings(max_examples=50, deadline=None)
    def test_concurrent_debits_never_overdraw(self, initial, amounts):
        spent, balance, total = asyncio.run(_concurrent_debits(_new_ledger(initial), amounts))

        assert balance >= 0
        assert balance == initial - spent
        assert balance == total
