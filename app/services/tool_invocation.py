"""
Tool Invocation Service - The metered generate/debit/record protocol.

Order of operations:
1. validate input                    (400, nothing happens)
2. ensure profile, check balance     (402, nothing happens)
3. call the generation provider      (502, nothing committed)
4. debit against a pre-assigned generation id
5. persist the generation under that id
6. return result and balances

The ledger and the generation store share no transaction. If step 5 fails
after a successful debit, the debit is compensated with a refund; if the
refund fails too, the usage row is left for scripts/reconcile_usage.py.
"""

import time
from typing import Any
from uuid import UUID, uuid4

from structlog import get_logger

from app.exceptions import (
    InsufficientCreditsError,
    LedgerError,
    StorageError,
    UpstreamFailureError,
)
from app.models.domain import InvocationOutcome, ToolType, TransactionType
from app.observability.metrics import metrics
from app.observability.tracing import trace_operation
from app.services.generation_invoker import GenerationInvoker
from app.services.generations import GenerationStore
from app.services.ledger import LedgerService
from app.services.tools import build_title, get_tool_definition, parse_tool_input
from app.storage.base import REFUND_REF_PREFIX

logger = get_logger(__name__)


class ToolInvocationService:
    """Runs one tool invocation end to end."""

    def __init__(
        self,
        ledger: LedgerService,
        generations: GenerationStore,
        invoker: GenerationInvoker,
    ) -> None:
        self.ledger = ledger
        self.generations = generations
        self.invoker = invoker

    async def invoke(
        self,
        external_id: str,
        tool_type: ToolType,
        payload: Any,
        email: str | None = None,
        display_name: str | None = None,
    ) -> InvocationOutcome:
        """
        Invoke a tool for a caller.

        Raises:
            InputValidationError: Payload fails the tool's input rules
            InsufficientCreditsError: Balance below the tool's cost
            UpstreamFailureError: Generation provider failed (no debit)
            StorageError: Persistence failed
        """
        tool_input = parse_tool_input(tool_type, payload)
        cost = self.ledger.cost_of(tool_type)

        profile = await self.ledger.get_or_create_profile(external_id, email, display_name)
        if profile.credits < cost:
            metrics.record_debit(tool_type.value, "insufficient_credits")
            logger.info(
                "tool_invocation_insufficient_credits",
                external_id=external_id,
                tool_type=tool_type.value,
                cost=cost,
                balance=profile.credits,
            )
            raise InsufficientCreditsError(balance=profile.credits, required=cost)

        with trace_operation(
            "tool_invocation", tool_type=tool_type.value, external_id=external_id, cost=cost
        ) as span:
            started = time.monotonic()
            try:
                document = await self.invoker.generate(tool_type, tool_input)
            except UpstreamFailureError:
                metrics.record_generation(
                    tool_type.value, "upstream_failure", time.monotonic() - started
                )
                logger.warning(
                    "tool_invocation_upstream_failure",
                    external_id=external_id,
                    tool_type=tool_type.value,
                    cost=cost,
                )
                raise
            metrics.record_generation(tool_type.value, "success", time.monotonic() - started)

            generation_id = uuid4()
            span.set_attribute("generation_id", str(generation_id))

            debit = await self.ledger.debit(external_id, cost, tool_type, generation_id)
            if not debit.success:
                # Balance drained by a concurrent request after the pre-check
                raise InsufficientCreditsError(balance=debit.new_balance, required=cost)

            try:
                await self.generations.save(
                    external_id=external_id,
                    tool_type=tool_type,
                    title=build_title(tool_type, tool_input, document),
                    input_document=tool_input.to_document(),
                    output_document=document,
                    credits_used=cost,
                    generation_id=generation_id,
                )
            except LedgerError as e:
                logger.error(
                    "generation_record_failed_after_debit",
                    external_id=external_id,
                    tool_type=tool_type.value,
                    cost=cost,
                    generation_id=str(generation_id),
                    error=type(e).__name__,
                )
                await self._refund(external_id, cost, tool_type, generation_id)
                raise StorageError("failed to record generation") from e

        return InvocationOutcome(
            tool_type=tool_type,
            result={get_tool_definition(tool_type).result_key: document},
            generation_id=generation_id,
            credits_used=cost,
            credits_remaining=debit.new_balance,
        )

    async def _refund(
        self, external_id: str, cost: int, tool_type: ToolType, generation_id: UUID
    ) -> None:
        """Compensate a debit whose generation could not be recorded."""
        try:
            refund = await self.ledger.credit(
                external_id=external_id,
                amount=cost,
                transaction_type=TransactionType.REFUND,
                description=f"Refund: {tool_type.value} result could not be saved",
                external_ref=f"{REFUND_REF_PREFIX}{generation_id}",
            )
        except LedgerError as e:
            logger.critical(
                "ledger_reconciliation_required",
                external_id=external_id,
                cost=cost,
                generation_id=str(generation_id),
                error=type(e).__name__,
            )
            return

        if not refund.success:
            logger.critical(
                "ledger_reconciliation_required",
                external_id=external_id,
                cost=cost,
                generation_id=str(generation_id),
                error=refund.error,
            )
            return

        logger.warning(
            "generation_debit_refunded",
            external_id=external_id,
            cost=cost,
            generation_id=str(generation_id),
            new_balance=refund.new_balance,
        )
