"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from uuid import UUID


class LedgerError(Exception):
    """Base exception for all credit ledger and credential errors."""

    pass


class InsufficientCreditsError(LedgerError):
    """Raised when a profile's balance is below the required cost."""

    def __init__(self, balance: int, required: int) -> None:
        self.balance = balance
        self.required = required
        super().__init__(f"Insufficient credits. Balance: {balance}, Required: {required}")


class ResourceNotFoundError(LedgerError):
    """Raised when a resource doesn't exist or isn't owned by the caller."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ProfileNotFoundError(ResourceNotFoundError):
    """Raised when no profile exists for an external id."""

    def __init__(self, external_id: str) -> None:
        self.external_id = external_id
        super().__init__(f"Profile not found: {external_id}")


class APIKeyNotFoundError(ResourceNotFoundError):
    """Raised when an API key doesn't exist, isn't owned, or is already revoked."""

    def __init__(self, key_id: UUID | str) -> None:
        self.key_id = key_id
        super().__init__(f"API key not found: {key_id}")


class DuplicateProfileError(LedgerError):
    """Raised when a profile insert loses a race on the external id."""

    def __init__(self, external_id: str) -> None:
        self.external_id = external_id
        super().__init__(f"Profile already exists: {external_id}")


class IdempotencyConflictError(LedgerError):
    """Raised when an external reference or generation id was already applied."""

    def __init__(self, reference: str) -> None:
        self.reference = reference
        super().__init__(f"Idempotency conflict: {reference} already applied")


class InputValidationError(LedgerError):
    """Raised when request input is malformed."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Invalid input: {message}")


class UpstreamFailureError(LedgerError):
    """Raised when the generation provider fails or returns unusable output."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Upstream failure: {message}")


class StorageError(LedgerError):
    """Raised when a persistence operation fails unexpectedly."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Storage error: {message}")


class PaymentProviderError(LedgerError):
    """Raised when payment provider operation fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Payment provider error: {message}")


class WebhookVerificationError(LedgerError):
    """Raised when webhook verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook verification error: {message}")


class AuthenticationError(LedgerError):
    """Raised when authentication fails (missing, malformed, unknown or revoked credential)."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")
