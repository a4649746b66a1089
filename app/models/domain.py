"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
The only free-form documents are generation inputs/outputs, which are opaque
by nature.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


class ToolType(str, Enum):
    """Closed set of invocable tools."""

    ROADMAP = "roadmap"
    PRD = "prd"
    PITCH_DECK = "pitch_deck"
    PERSONA = "persona"
    COMPETITIVE_ANALYSIS = "competitive_analysis"

    @classmethod
    def parse(cls, raw: str) -> "ToolType":
        """
        Parse a tool name from a path or query parameter.

        Accepts kebab-case ("pitch-deck") as well as the canonical snake_case.

        Raises:
            ValueError: Unknown tool type
        """
        return cls(raw.strip().lower().replace("-", "_"))


class Plan(str, Enum):
    """Subscription plan enumeration."""

    FREE = "free"
    STARTER = "starter"
    PRO = "pro"
    UNLIMITED = "unlimited"


class TransactionType(str, Enum):
    """Credit transaction type enumeration."""

    PURCHASE = "purchase"
    USAGE = "usage"
    BONUS = "bonus"
    REFUND = "refund"
    SIGNUP = "signup"


# Transaction types allowed on the additive credit path
CREDIT_TRANSACTION_TYPES = frozenset(
    {TransactionType.PURCHASE, TransactionType.BONUS, TransactionType.REFUND}
)


class PackageKind(str, Enum):
    """How a credit package is billed."""

    ONE_TIME = "one_time"
    SUBSCRIPTION = "subscription"


@dataclass(frozen=True)
class CreditPackage:
    """A purchasable credit package."""

    package_id: str
    name: str
    credits: int
    price_minor: int
    kind: PackageKind


@dataclass(frozen=True)
class ProfileData:
    """Immutable user profile snapshot."""

    profile_id: UUID
    external_id: str
    email: str | None
    display_name: str | None
    credits: int
    plan: Plan
    subscription_ref: str | None
    created_at: datetime
    updated_at: datetime

    def __post_init__(self) -> None:
        """Validate balance constraints."""
        if self.credits < 0:
            raise ValueError(f"Credits cannot be negative: {self.credits}")


@dataclass(frozen=True)
class TransactionData:
    """Immutable credit transaction after persistence."""

    transaction_id: UUID
    profile_id: UUID
    amount: int
    transaction_type: TransactionType
    description: str | None
    tool_type: ToolType | None
    generation_id: UUID | None
    external_ref: str | None
    created_at: datetime


@dataclass(frozen=True)
class LedgerEntry:
    """Result of a committed balance mutation: the new balance and its audit row."""

    new_balance: int
    transaction: TransactionData


@dataclass(frozen=True)
class LedgerResult:
    """
    Outcome of a debit or credit request.

    Expected business failures (insufficient credits, unknown profile) are
    reported here rather than raised, so callers can branch on `success`.
    """

    success: bool
    new_balance: int
    error: str | None = None
    transaction: TransactionData | None = None


@dataclass(frozen=True)
class ApiKeyRecord:
    """Stored API key - never carries the plaintext secret."""

    key_id: UUID
    profile_id: UUID
    external_id: str
    name: str
    key_prefix: str
    key_hash: str
    created_at: datetime
    last_used_at: datetime | None
    revoked_at: datetime | None

    @property
    def is_revoked(self) -> bool:
        """Revocation is terminal."""
        return self.revoked_at is not None


@dataclass(frozen=True)
class ApiKeyInfo:
    """Public (display-safe) view of an API key."""

    key_id: UUID
    name: str
    prefix: str
    created_at: datetime
    last_used_at: datetime | None


@dataclass(frozen=True)
class CreatedApiKey:
    """Newly created API key - the only object that ever holds the plaintext."""

    plaintext_secret: str
    info: ApiKeyInfo


@dataclass(frozen=True)
class AuthResult:
    """Result of validating a bearer secret."""

    valid: bool
    external_id: str | None = None
    key_id: UUID | None = None
    reason: str | None = None  # internal only, never returned to callers


@dataclass(frozen=True)
class GenerationData:
    """Immutable persisted tool invocation."""

    generation_id: UUID
    profile_id: UUID
    tool_type: ToolType
    title: str | None
    input: dict[str, Any]
    output: dict[str, Any]
    credits_used: int
    created_at: datetime


@dataclass(frozen=True)
class InvocationOutcome:
    """Result returned to callers of a tool invocation."""

    tool_type: ToolType
    result: dict[str, Any]
    generation_id: UUID
    credits_used: int
    credits_remaining: int


@dataclass(frozen=True)
class PaymentEvent:
    """
    Provider-agnostic payment webhook event.

    Only the fields the ledger acts on are carried.
    """

    event_id: str
    event_type: str
    object_id: str
    external_id: str | None
    package_id: str | None
    purchase_kind: str | None
    credits: int | None
    subscription_ref: str | None
    subscription_status: str | None
    billing_reason: str | None
