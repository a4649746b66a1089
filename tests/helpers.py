"""
Shared test helpers: fake collaborators, session tokens and signed webhooks.
"""

import hashlib
import hmac
import json
import time
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

from app.config import settings
from app.models.domain import ToolType
from app.services.tools import ToolInput


class FakeInvoker:
    """Records calls; returns a fixed document or raises."""

    def __init__(
        self, document: dict[str, Any] | None = None, error: Exception | None = None
    ) -> None:
        self.document = document if document is not None else {"title": "Generated"}
        self.error = error
        self.calls: list[tuple[ToolType, ToolInput]] = []

    async def generate(self, tool_type: ToolType, tool_input: ToolInput) -> dict[str, Any]:
        self.calls.append((tool_type, tool_input))
        if self.error is not None:
            raise self.error
        return self.document


def make_session_token(
    sub: str = "user_123",
    email: str | None = "user@example.com",
    name: str | None = "Test User",
    expires_in: timedelta = timedelta(hours=1),
    secret: str | None = None,
) -> str:
    """Session JWT as the identity provider would issue it."""
    claims: dict[str, Any] = {"sub": sub, "exp": datetime.now(UTC) + expires_in}
    if email:
        claims["email"] = email
    if name:
        claims["name"] = name
    return jwt.encode(claims, secret or settings.session_jwt_secret, algorithm="HS256")


def session_headers(sub: str = "user_123") -> dict[str, str]:
    return {"Authorization": f"Bearer {make_session_token(sub=sub)}"}


def bearer_headers(secret: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {secret}"}


def sign_stripe_payload(
    payload: bytes, secret: str | None = None, timestamp: int | None = None
) -> str:
    """Build a `stripe-signature` header the way Stripe does."""
    ts = timestamp if timestamp is not None else int(time.time())
    signed = f"{ts}.{payload.decode('utf-8')}".encode()
    digest = hmac.new(
        (secret or settings.stripe_webhook_secret).encode(), signed, hashlib.sha256
    ).hexdigest()
    return f"t={ts},v1={digest}"


def stripe_event(event_type: str, obj: dict[str, Any], event_id: str = "evt_test_1") -> bytes:
    return json.dumps(
        {"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}}
    ).encode()
