"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations. Generation
input/output are the only JSON columns (provider-defined documents).
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in development and tests)
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class UserProfile(Base):
    """
    ORM model for user_profiles table.

    One row per identity-provider subject. Holds the credit balance and plan.
    """

    __tablename__ = "user_profiles"

    # Primary Key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Identity (identity-provider subject)
    external_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    # Contact information
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Balance
    credits: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Plan
    plan: Mapped[str] = mapped_column(String(20), nullable=False, default="free")
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_profile_credits_non_negative"),
        CheckConstraint(
            "plan IN ('free', 'starter', 'pro', 'unlimited')", name="ck_profile_plan"
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<UserProfile(id={self.id}, external_id={self.external_id}, "
            f"credits={self.credits}, plan={self.plan})>"
        )


class CreditTransaction(Base):
    """
    ORM model for credit_transactions table.

    Append-only ledger: one row per balance mutation, never updated or deleted.
    """

    __tablename__ = "credit_transactions"

    # Primary Key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Owning profile
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False
    )

    # Signed amount (positive = credit, negative = debit)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Usage context
    tool_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    # Weak back-reference: at most one usage row per generation
    generation_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, unique=True)

    # Idempotency for externally-triggered credits (Stripe checkout session id, ...)
    external_ref: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)

    # Audit timestamp
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount <> 0", name="ck_transaction_amount_non_zero"),
        CheckConstraint(
            "type IN ('purchase', 'usage', 'bonus', 'refund', 'signup')",
            name="ck_transaction_type",
        ),
        Index("idx_credit_transactions_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<CreditTransaction(id={self.id}, user_id={self.user_id}, "
            f"amount={self.amount}, type={self.type})>"
        )


class Generation(Base):
    """
    ORM model for generations table.

    Persisted tool invocation results. Immutable after creation.
    """

    __tablename__ = "generations"

    # Primary Key (pre-assigned by the invocation protocol)
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False
    )
    tool_type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    input: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False)
    output: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False)
    credits_used: Mapped[int] = mapped_column(BigInteger, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("credits_used > 0", name="ck_generation_credits_positive"),
        Index("idx_generations_user_created", "user_id", "created_at"),
        Index("idx_generations_user_tool", "user_id", "tool_type"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Generation(id={self.id}, user_id={self.user_id}, "
            f"tool_type={self.tool_type}, credits_used={self.credits_used})>"
        )


class APIKey(Base):
    """
    ORM model for api_keys table.

    Stores SHA-256 digests of bearer secrets; the plaintext is never persisted.
    """

    __tablename__ = "api_keys"

    # Primary Key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Ownership
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Metadata
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Key storage
    key_prefix: Mapped[str] = mapped_column(String(32), nullable=False)
    key_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "length(name) >= 1 AND length(name) <= 100", name="ck_api_keys_name_length"
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<APIKey(id={self.id}, prefix={self.key_prefix}, "
            f"user_id={self.user_id}, revoked={self.revoked_at is not None})>"
        )
