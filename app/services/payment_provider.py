"""
Payment Provider Protocol - Provider-agnostic webhook interface.

NO DICTIONARIES - Verified events come back as typed PaymentEvent objects.
"""

from typing import Protocol

from app.models.domain import PaymentEvent


class PaymentProvider(Protocol):
    """
    Payment provider protocol.

    Any provider (Stripe today) must verify its own webhook signatures and
    translate events into PaymentEvent before the ledger sees them.
    """

    def verify_webhook(self, payload: bytes, signature: str) -> PaymentEvent:
        """
        Verify and parse a webhook delivery.

        Args:
            payload: Raw request body, exactly as received
            signature: Provider signature header value

        Raises:
            WebhookVerificationError: Signature invalid or payload unparseable
        """
        ...
