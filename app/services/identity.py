"""
Identity Provider - Session token verification.

Sessions are identity-provider-issued JWTs (Clerk-style). The `sub` claim is
the external id every other component keys on.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Protocol

import jwt
from structlog import get_logger

from app.config import settings
from app.exceptions import AuthenticationError

logger = get_logger(__name__)


@dataclass(frozen=True)
class SessionIdentity:
    """Authenticated session subject."""

    external_id: str
    email: str | None = None
    name: str | None = None


class SessionVerifier(Protocol):
    """Validates a session token and yields the subject."""

    async def verify(self, token: str) -> SessionIdentity:
        """
        Raises:
            AuthenticationError: Token missing, expired, or not signed by the provider
        """
        ...


class JWTSessionVerifier:
    """
    Session verifier backed by PyJWT.

    Uses the provider's JWKS (RS256) when SESSION_JWKS_URL is set, otherwise a
    shared HS256 secret.
    """

    def __init__(
        self,
        jwks_url: str = "",
        secret: str = "",
        issuer: str | None = None,
        audience: str | None = None,
    ) -> None:
        self.secret = secret
        self.issuer = issuer
        self.audience = audience
        self._jwks_client = jwt.PyJWKClient(jwks_url) if jwks_url else None

    async def verify(self, token: str) -> SessionIdentity:
        if self._jwks_client is None and not self.secret:
            logger.error("session_verification_not_configured")
            raise AuthenticationError("Session verification is not configured")

        key: Any
        if self._jwks_client is not None:
            try:
                # PyJWKClient fetches over blocking HTTP (cached after first use)
                signing_key = await asyncio.to_thread(
                    self._jwks_client.get_signing_key_from_jwt, token
                )
            except jwt.PyJWKClientError as e:
                logger.warning("session_signing_key_unavailable", error=str(e))
                raise AuthenticationError("Invalid session") from e
            except jwt.InvalidTokenError as e:
                logger.warning("session_token_invalid", error=str(e))
                raise AuthenticationError("Invalid session") from e
            key, algorithms = signing_key.key, ["RS256"]
        else:
            key, algorithms = self.secret, ["HS256"]

        try:
            claims: dict[str, Any] = jwt.decode(
                token,
                key,
                algorithms=algorithms,
                issuer=self.issuer,
                audience=self.audience,
                options={"require": ["sub", "exp"], "verify_aud": self.audience is not None},
            )
        except jwt.ExpiredSignatureError as e:
            logger.info("session_token_expired")
            raise AuthenticationError("Session expired") from e
        except jwt.InvalidTokenError as e:
            logger.warning("session_token_invalid", error=str(e))
            raise AuthenticationError("Invalid session") from e

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise AuthenticationError("Invalid session")

        return SessionIdentity(
            external_id=subject,
            email=_optional_claim(claims, "email"),
            name=_optional_claim(claims, "name"),
        )


def _optional_claim(claims: dict[str, Any], name: str) -> str | None:
    value = claims.get(name)
    return value if isinstance(value, str) and value else None


_verifier: SessionVerifier | None = None


def get_session_verifier() -> SessionVerifier:
    """Get or create the process-wide verifier from settings."""
    global _verifier
    if _verifier is None:
        _verifier = JWTSessionVerifier(
            jwks_url=settings.session_jwks_url,
            secret=settings.session_jwt_secret,
            issuer=settings.session_jwt_issuer,
            audience=settings.session_jwt_audience,
        )
    return _verifier
