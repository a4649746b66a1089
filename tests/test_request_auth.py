"""
Tests for request authentication (bearer API keys and session tokens).
"""

from datetime import timedelta

import pytest
from helpers import make_session_token

from app.exceptions import AuthenticationError
from app.services.api_key import APIKeyService
from app.services.identity import JWTSessionVerifier, SessionIdentity
from app.services.ledger import LedgerService
from app.services.request_auth import (
    GENERIC_BEARER_ERROR,
    GENERIC_SESSION_ERROR,
    RequestAuthenticator,
    extract_bearer_token,
)

SECRET = "unit-test-session-secret-with-enough-length"


class StaticVerifier:
    """Session verifier that accepts exactly one token."""

    def __init__(self, token: str, identity: SessionIdentity) -> None:
        self.token = token
        self.identity = identity

    async def verify(self, token: str) -> SessionIdentity:
        if token != self.token:
            raise AuthenticationError("Session expired")
        return self.identity


@pytest.fixture
def verifier() -> StaticVerifier:
    return StaticVerifier("good-session", SessionIdentity("user_sess", "s@example.com", "Sam"))


@pytest.fixture
def authenticator(api_key_service: APIKeyService, verifier: StaticVerifier) -> RequestAuthenticator:
    return RequestAuthenticator(api_key_service, verifier)


class TestExtractBearerToken:
    """Tests for extract_bearer_token."""

    @pytest.mark.parametrize(
        ("header", "expected"),
        [
            ("Bearer abc", "abc"),
            ("bearer abc", "abc"),
            ("  Bearer   abc  ", "abc"),
            (None, None),
            ("", None),
            ("Bearer", None),
            ("Basic abc", None),
            ("Bearer abc def", None),
        ],
    )
    def test_parsing(self, header, expected):
        assert extract_bearer_token(header) == expected


class TestBearerAuthentication:
    """Tests for authenticate_bearer."""

    @pytest.mark.asyncio
    async def test_valid_key(
        self,
        authenticator: RequestAuthenticator,
        api_key_service: APIKeyService,
        ledger: LedgerService,
    ):
        await ledger.get_or_create_profile("user_key")
        created = await api_key_service.create_api_key("user_key", "CLI")

        external_id = await authenticator.authenticate_bearer(
            f"Bearer {created.plaintext_secret}"
        )

        assert external_id == "user_key"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "header",
        [None, "Bearer not-a-key", "Bearer 1lab_sk_" + "q" * 43, "Token 1lab_sk_" + "q" * 43],
    )
    async def test_failures_share_one_message(
        self, authenticator: RequestAuthenticator, header: str | None
    ):
        """Missing, malformed and unknown keys are indistinguishable."""
        with pytest.raises(AuthenticationError) as exc_info:
            await authenticator.authenticate_bearer(header)

        assert exc_info.value.message == GENERIC_BEARER_ERROR

    @pytest.mark.asyncio
    async def test_revoked_key(
        self,
        authenticator: RequestAuthenticator,
        api_key_service: APIKeyService,
        ledger: LedgerService,
    ):
        await ledger.get_or_create_profile("user_key")
        created = await api_key_service.create_api_key("user_key", "CLI")
        await api_key_service.revoke_api_key("user_key", created.info.key_id)

        with pytest.raises(AuthenticationError) as exc_info:
            await authenticator.authenticate_bearer(f"Bearer {created.plaintext_secret}")

        assert exc_info.value.message == GENERIC_BEARER_ERROR


class TestSessionAuthentication:
    """Tests for authenticate_session."""

    @pytest.mark.asyncio
    async def test_cookie(self, authenticator: RequestAuthenticator):
        identity = await authenticator.authenticate_session("good-session", None)

        assert identity.external_id == "user_sess"

    @pytest.mark.asyncio
    async def test_header_fallback(self, authenticator: RequestAuthenticator):
        identity = await authenticator.authenticate_session(None, "Bearer good-session")

        assert identity.external_id == "user_sess"

    @pytest.mark.asyncio
    async def test_cookie_wins_over_header(self, authenticator: RequestAuthenticator):
        with pytest.raises(AuthenticationError):
            await authenticator.authenticate_session("stale-cookie", "Bearer good-session")

    @pytest.mark.asyncio
    async def test_missing_session(self, authenticator: RequestAuthenticator):
        with pytest.raises(AuthenticationError) as exc_info:
            await authenticator.authenticate_session(None, None)

        assert exc_info.value.message == GENERIC_SESSION_ERROR

    @pytest.mark.asyncio
    async def test_verifier_reason_not_leaked(self, authenticator: RequestAuthenticator):
        with pytest.raises(AuthenticationError) as exc_info:
            await authenticator.authenticate_session("bad", None)

        assert exc_info.value.message == GENERIC_SESSION_ERROR


class TestJWTSessionVerifier:
    """Tests for the HS256 path of JWTSessionVerifier."""

    @pytest.mark.asyncio
    async def test_valid_token(self):
        verifier = JWTSessionVerifier(secret=SECRET)
        token = make_session_token(sub="user_jwt", email="j@example.com", name="Jo", secret=SECRET)

        identity = await verifier.verify(token)

        assert identity == SessionIdentity("user_jwt", "j@example.com", "Jo")

    @pytest.mark.asyncio
    async def test_optional_claims_absent(self):
        verifier = JWTSessionVerifier(secret=SECRET)
        token = make_session_token(sub="user_jwt", email=None, name=None, secret=SECRET)

        identity = await verifier.verify(token)

        assert identity.email is None
        assert identity.name is None

    @pytest.mark.asyncio
    async def test_expired_token(self):
        verifier = JWTSessionVerifier(secret=SECRET)
        token = make_session_token(expires_in=timedelta(minutes=-5), secret=SECRET)

        with pytest.raises(AuthenticationError) as exc_info:
            await verifier.verify(token)

        assert exc_info.value.message == "Session expired"

    @pytest.mark.asyncio
    async def test_wrong_signature(self):
        verifier = JWTSessionVerifier(secret=SECRET)
        token = make_session_token(secret="some-other-secret-that-is-also-long-enough")

        with pytest.raises(AuthenticationError) as exc_info:
            await verifier.verify(token)

        assert exc_info.value.message == "Invalid session"

    @pytest.mark.asyncio
    async def test_garbage_token(self):
        verifier = JWTSessionVerifier(secret=SECRET)

        with pytest.raises(AuthenticationError):
            await verifier.verify("not.a.jwt")

    @pytest.mark.asyncio
    async def test_unconfigured_verifier_rejects(self):
        verifier = JWTSessionVerifier()

        with pytest.raises(AuthenticationError):
            await verifier.verify(make_session_token(secret=SECRET))

    @pytest.mark.asyncio
    async def test_audience_checked_when_configured(self):
        verifier = JWTSessionVerifier(secret=SECRET, audience="1lab-web")
        token = make_session_token(secret=SECRET)

        with pytest.raises(AuthenticationError):
            await verifier.verify(token)
