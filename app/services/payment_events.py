"""
Payment Event Handler - Applies verified payment events to the ledger.

Credits are idempotent on the checkout session id, so provider retries of the
same event never add credits twice.
"""

from enum import Enum

from structlog import get_logger

from app.config import get_credit_package
from app.exceptions import IdempotencyConflictError, ProfileNotFoundError
from app.models.domain import PackageKind, PaymentEvent, Plan, TransactionType
from app.services.ledger import LedgerService

logger = get_logger(__name__)

# Checkout metadata "type" expected for each package kind
METADATA_KINDS = {PackageKind.ONE_TIME: "credits", PackageKind.SUBSCRIPTION: "subscription"}


class WebhookStatus(str, Enum):
    """Acknowledgement status returned to the provider."""

    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    FAILED = "failed"


class PaymentEventHandler:
    """Dispatch payment events to ledger operations."""

    def __init__(self, ledger: LedgerService) -> None:
        self.ledger = ledger

    async def handle(self, event: PaymentEvent) -> WebhookStatus:
        """
        Apply one event.

        Business failures (unknown user, bad package) are logged and
        acknowledged so the provider stops retrying; storage errors raise.
        """
        logger.info(
            "payment_event_received",
            event_id=event.event_id,
            event_type=event.event_type,
            external_id=event.external_id,
        )

        if event.event_type == "checkout.session.completed":
            return await self._checkout_completed(event)

        if event.event_type in ("customer.subscription.created", "customer.subscription.updated"):
            if event.subscription_status != "active":
                return self._ignored(event, "subscription_not_active")
            return await self._set_plan(event, Plan.UNLIMITED, event.subscription_ref)

        if event.event_type == "customer.subscription.deleted":
            return await self._set_plan(event, Plan.FREE, None)

        if event.event_type == "invoice.payment_succeeded":
            if event.billing_reason != "subscription_cycle" or not event.subscription_ref:
                return self._ignored(event, "not_a_renewal")
            return await self._set_plan(event, Plan.UNLIMITED, event.subscription_ref)

        return self._ignored(event, "unhandled_event_type")

    async def _checkout_completed(self, event: PaymentEvent) -> WebhookStatus:
        if not event.external_id or not event.package_id:
            logger.error("payment_event_missing_metadata", event_id=event.event_id)
            return WebhookStatus.FAILED

        package = get_credit_package(event.package_id)
        if package is None:
            logger.error(
                "payment_event_unknown_package",
                event_id=event.event_id,
                package_id=event.package_id,
            )
            return WebhookStatus.FAILED

        if event.purchase_kind is not None and event.purchase_kind != METADATA_KINDS[package.kind]:
            # Catalogue is authoritative
            logger.warning(
                "payment_event_kind_mismatch",
                event_id=event.event_id,
                metadata_kind=event.purchase_kind,
                package_kind=package.kind.value,
            )

        if package.kind == PackageKind.SUBSCRIPTION:
            return await self._set_plan(event, Plan.UNLIMITED, event.subscription_ref)

        if event.credits is not None and event.credits != package.credits:
            # Catalogue is authoritative
            logger.warning(
                "payment_event_credit_mismatch",
                event_id=event.event_id,
                metadata_credits=event.credits,
                package_credits=package.credits,
            )

        try:
            result = await self.ledger.credit(
                external_id=event.external_id,
                amount=package.credits,
                transaction_type=TransactionType.PURCHASE,
                description=f"Purchased {package.name}",
                external_ref=event.object_id,
            )
        except IdempotencyConflictError:
            logger.info(
                "payment_event_already_applied",
                event_id=event.event_id,
                checkout_session=event.object_id,
            )
            return WebhookStatus.DUPLICATE

        if not result.success:
            logger.error(
                "payment_event_credit_failed",
                event_id=event.event_id,
                external_id=event.external_id,
                error=result.error,
            )
            return WebhookStatus.FAILED

        return WebhookStatus.PROCESSED

    async def _set_plan(
        self, event: PaymentEvent, plan: Plan, subscription_ref: str | None
    ) -> WebhookStatus:
        if not event.external_id:
            return self._ignored(event, "missing_user_metadata")

        try:
            await self.ledger.update_plan(event.external_id, plan, subscription_ref)
        except ProfileNotFoundError:
            logger.error(
                "payment_event_profile_not_found",
                event_id=event.event_id,
                external_id=event.external_id,
            )
            return WebhookStatus.FAILED

        return WebhookStatus.PROCESSED

    @staticmethod
    def _ignored(event: PaymentEvent, reason: str) -> WebhookStatus:
        logger.info(
            "payment_event_ignored",
            event_id=event.event_id,
            event_type=event.event_type,
            reason=reason,
        )
        return WebhookStatus.IGNORED
