"""
Stripe Payment Provider Implementation.

NO DICTIONARIES LEAK OUT - Stripe's JSON is read here and nowhere else.
"""

import json
from typing import Any

import stripe
from structlog import get_logger

from app.exceptions import WebhookVerificationError
from app.models.domain import PaymentEvent

logger = get_logger(__name__)

# Seconds of clock skew accepted on the signature timestamp
SIGNATURE_TOLERANCE = 300


class StripeProvider:
    """
    Stripe webhook verification.

    Implements the PaymentProvider protocol for Stripe.
    """

    def __init__(self, webhook_secret: str, api_key: str = "") -> None:
        """
        Initialize Stripe provider.

        Args:
            webhook_secret: Stripe webhook signing secret (whsec_...)
            api_key: Stripe secret API key (not needed for verification)
        """
        self.webhook_secret = webhook_secret
        if api_key:
            stripe.api_key = api_key

    def verify_webhook(self, payload: bytes, signature: str) -> PaymentEvent:
        """
        Verify the Stripe-Signature header and parse the event.

        Raises:
            WebhookVerificationError: Bad signature or malformed event
        """
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"), signature, self.webhook_secret, SIGNATURE_TOLERANCE
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as exc:
            logger.error("stripe_webhook_verification_failed", error=type(exc).__name__)
            raise WebhookVerificationError("Invalid Stripe webhook signature") from exc

        try:
            event = json.loads(payload)
            parsed = _parse_event(event)
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as exc:
            logger.error("stripe_webhook_parsing_failed", error=type(exc).__name__)
            raise WebhookVerificationError("Malformed Stripe webhook payload") from exc

        logger.info(
            "stripe_webhook_verified",
            event_id=parsed.event_id,
            event_type=parsed.event_type,
        )
        return parsed


def _parse_event(event: dict[str, Any]) -> PaymentEvent:
    obj: dict[str, Any] = event["data"]["object"]
    metadata = obj.get("metadata") or {}

    event_type: str = event["type"]
    subscription_ref: str | None
    if event_type.startswith("customer.subscription."):
        subscription_ref = obj.get("id")
    else:
        subscription_ref = _ref(obj.get("subscription"))

    if event_type.startswith("invoice."):
        # Invoices carry the subscription's metadata, not their own
        details = _invoice_subscription_details(obj)
        metadata = details.get("metadata") or metadata
        subscription_ref = subscription_ref or _ref(details.get("subscription"))

    return PaymentEvent(
        event_id=event["id"],
        event_type=event_type,
        object_id=obj.get("id", ""),
        external_id=metadata.get("userId"),
        package_id=metadata.get("packageId"),
        purchase_kind=metadata.get("type"),
        credits=_optional_int(metadata.get("credits")),
        subscription_ref=subscription_ref,
        subscription_status=obj.get("status") if event_type.startswith("customer.") else None,
        billing_reason=obj.get("billing_reason"),
    )


def _ref(value: Any) -> str | None:
    """Stripe expandable field: either an id string or an object with an id."""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return value.get("id")
    return None


def _invoice_subscription_details(invoice: dict[str, Any]) -> dict[str, Any]:
    # Newer API versions nest it under parent
    parent = invoice.get("parent") or {}
    return parent.get("subscription_details") or invoice.get("subscription_details") or {}


def _optional_int(value: Any) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None
