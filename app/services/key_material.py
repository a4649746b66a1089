"""
Key Material - Bearer secret generation, digesting and format checks.

Secrets look like `1lab_sk_<base64url>` and are only ever stored as a
SHA-256 hex digest, which is deterministic so lookups are by digest.
"""

import base64
import hashlib
import re
import secrets
from collections.abc import Callable

from app.config import settings

SECRET_ENTROPY_BYTES = 32
DISPLAY_PREFIX_LENGTH = 16

RandomSource = Callable[[int], bytes]


def secret_marker(namespace: str | None = None) -> str:
    """Literal prefix every secret starts with, e.g. `1lab_sk_`."""
    return f"{namespace or settings.api_key_namespace}_sk_"


def _secret_pattern(namespace: str) -> re.Pattern[str]:
    return re.compile(rf"^{re.escape(secret_marker(namespace))}[A-Za-z0-9_-]{{24,}}$")


def generate_secret(
    random_source: RandomSource = secrets.token_bytes, namespace: str | None = None
) -> str:
    """
    Generate a new bearer secret.

    Args:
        random_source: Callable returning n cryptographically random bytes
            (injectable so tests can be deterministic)
        namespace: Overrides API_KEY_NAMESPACE
    """
    random_bytes = random_source(SECRET_ENTROPY_BYTES)
    suffix = base64.urlsafe_b64encode(random_bytes).decode("ascii").rstrip("=")
    return f"{secret_marker(namespace)}{suffix}"


def hash_secret(secret: str) -> str:
    """SHA-256 hex digest of a secret (64 lowercase hex chars)."""
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def is_valid_format(candidate: str, namespace: str | None = None) -> bool:
    """True if `candidate` has the shape of a secret. Says nothing about existence."""
    return bool(_secret_pattern(namespace or settings.api_key_namespace).fullmatch(candidate))


def display_prefix(secret: str) -> str:
    """Non-secret leading fragment stored for display."""
    return secret[:DISPLAY_PREFIX_LENGTH]
