"""
Tests for bearer secret generation, hashing and format checks.
"""

import re

from app.services.key_material import (
    DISPLAY_PREFIX_LENGTH,
    display_prefix,
    generate_secret,
    hash_secret,
    is_valid_format,
    secret_marker,
)

SECRET_PATTERN = re.compile(r"^1lab_sk_[A-Za-z0-9_-]{24,}$")


class TestGenerateSecret:
    """Tests for generate_secret."""

    def test_matches_public_format(self):
        """Secrets use the namespace marker and a long url-safe suffix."""
        secret = generate_secret()

        assert SECRET_PATTERN.match(secret)
        assert is_valid_format(secret)

    def test_secrets_are_unique(self):
        """Fresh randomness on every call."""
        secrets = {generate_secret() for _ in range(50)}

        assert len(secrets) == 50

    def test_random_source_is_injectable(self):
        """A deterministic source gives a deterministic secret."""

        def zeros(n: int) -> bytes:
            return b"\x00" * n

        first = generate_secret(random_source=zeros)
        second = generate_secret(random_source=zeros)

        assert first == second
        assert first == "1lab_sk_" + "A" * 43

    def test_namespace_override(self):
        """Namespace changes the marker."""
        secret = generate_secret(namespace="acme")

        assert secret.startswith("acme_sk_")
        assert is_valid_format(secret, namespace="acme")
        assert not is_valid_format(secret)


class TestHashSecret:
    """Tests for hash_secret."""

    def test_is_deterministic_sha256_hex(self):
        digest = hash_secret("1lab_sk_example")

        assert digest == hash_secret("1lab_sk_example")
        assert len(digest) == 64
        assert re.fullmatch(r"[0-9a-f]{64}", digest)

    def test_different_secrets_differ(self):
        assert hash_secret("1lab_sk_a") != hash_secret("1lab_sk_b")


class TestIsValidFormat:
    """Tests for is_valid_format."""

    def test_rejects_wrong_marker(self):
        assert not is_valid_format("sk_live_" + "a" * 40)

    def test_rejects_short_suffix(self):
        assert not is_valid_format("1lab_sk_" + "a" * 23)

    def test_accepts_minimum_suffix(self):
        assert is_valid_format("1lab_sk_" + "a" * 24)

    def test_rejects_illegal_characters(self):
        assert not is_valid_format("1lab_sk_" + "a" * 30 + "!")
        assert not is_valid_format("1lab_sk_" + "a" * 30 + " ")

    def test_rejects_trailing_newline(self):
        assert not is_valid_format("1lab_sk_" + "a" * 43 + "\n")

    def test_rejects_empty(self):
        assert not is_valid_format("")


class TestDisplayPrefix:
    """Tests for display_prefix and secret_marker."""

    def test_prefix_is_leading_fragment(self):
        secret = generate_secret()

        prefix = display_prefix(secret)

        assert len(prefix) == DISPLAY_PREFIX_LENGTH
        assert secret.startswith(prefix)
        assert prefix.startswith(secret_marker())

    def test_marker_default_namespace(self):
        assert secret_marker() == "1lab_sk_"
