"""
Payment webhook routes - Stripe events in, ledger mutations out.

The signature is verified before anything touches the ledger.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Header, Request
from structlog import get_logger

from app.api.dependencies import get_payment_event_handler
from app.config import settings
from app.exceptions import PaymentProviderError, WebhookVerificationError
from app.models.api import WebhookAckResponse
from app.services.payment_events import PaymentEventHandler
from app.services.payment_provider import PaymentProvider
from app.services.stripe_provider import StripeProvider

logger = get_logger(__name__)
router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def get_payment_provider() -> PaymentProvider:
    """
    Raises:
        PaymentProviderError: No webhook signing secret configured (503)
    """
    if not settings.stripe_webhook_secret:
        raise PaymentProviderError("STRIPE_WEBHOOK_SECRET is not set")
    return StripeProvider(settings.stripe_webhook_secret, settings.stripe_api_key)


@router.post("/stripe", response_model=WebhookAckResponse)
async def stripe_webhook(
    request: Request,
    provider: Annotated[PaymentProvider, Depends(get_payment_provider)],
    handler: Annotated[PaymentEventHandler, Depends(get_payment_event_handler)],
    stripe_signature: Annotated[str | None, Header(alias="stripe-signature")] = None,
) -> WebhookAckResponse:
    """
    Receive a Stripe event.

    Business failures are acknowledged with status "failed" so Stripe stops
    retrying; only storage errors produce a 5xx.
    """
    if not stripe_signature:
        logger.warning("stripe_webhook_missing_signature")
        raise WebhookVerificationError("Missing stripe-signature header")

    payload = await request.body()
    event = provider.verify_webhook(payload, stripe_signature)
    status = await handler.handle(event)

    logger.info(
        "stripe_webhook_handled",
        event_id=event.event_id,
        event_type=event.event_type,
        status=status.value,
    )
    return WebhookAckResponse(status=status.value, event_id=event.event_id)
