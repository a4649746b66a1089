"""
Request Authenticator - Resolves an inbound request to an external id.

Two paths feed the same identity space:
- bearer: `Authorization: Bearer <api key>` validated against the credential store
- session: identity-provider JWT from the session cookie or Authorization header

Failures always surface as a generic AuthenticationError; the specific reason
only reaches the logs.
"""

from structlog import get_logger

from app.exceptions import AuthenticationError
from app.observability.metrics import metrics
from app.services.api_key import APIKeyService
from app.services.identity import SessionIdentity, SessionVerifier

logger = get_logger(__name__)

GENERIC_BEARER_ERROR = "Invalid or missing API key"
GENERIC_SESSION_ERROR = "Unauthorized"


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token from `Bearer <token>`, or None if absent/malformed."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or " " in token:
        return None
    return token


class RequestAuthenticator:
    """Authenticate bearer and session requests."""

    def __init__(self, api_keys: APIKeyService, session_verifier: SessionVerifier) -> None:
        self.api_keys = api_keys
        self.session_verifier = session_verifier

    async def authenticate_bearer(self, authorization: str | None) -> str:
        """
        Resolve an API key bearer header to its owner's external id.

        Raises:
            AuthenticationError: Missing, malformed, unknown or revoked key
        """
        token = extract_bearer_token(authorization)
        if token is None:
            metrics.record_api_key_validation("missing")
            logger.info("bearer_auth_missing_header")
            raise AuthenticationError(GENERIC_BEARER_ERROR)

        result = await self.api_keys.validate_api_key(token)
        if not result.valid or result.external_id is None:
            metrics.record_api_key_validation(result.reason or "invalid")
            logger.warning("bearer_auth_failed", reason=result.reason)
            raise AuthenticationError(GENERIC_BEARER_ERROR)

        metrics.record_api_key_validation("valid")
        return result.external_id

    async def authenticate_session(
        self, session_cookie: str | None, authorization: str | None
    ) -> SessionIdentity:
        """
        Resolve a session to its subject. The cookie wins over the header.

        Raises:
            AuthenticationError: No session or the identity provider rejects it
        """
        token = session_cookie or extract_bearer_token(authorization)
        if not token:
            logger.info("session_auth_missing")
            raise AuthenticationError(GENERIC_SESSION_ERROR)

        try:
            return await self.session_verifier.verify(token)
        except AuthenticationError as e:
            logger.warning("session_auth_failed", reason=e.message)
            raise AuthenticationError(GENERIC_SESSION_ERROR) from e
