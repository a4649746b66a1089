"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed, except the
generated documents themselves, which are provider-defined JSON.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.models.domain import ApiKeyInfo, GenerationData, ProfileData, TransactionData

# ============================================================================
# Common
# ============================================================================


class ErrorResponse(BaseModel):
    """Error body shared by every endpoint."""

    success: bool = False
    error: str


class InsufficientCreditsResponse(ErrorResponse):
    """402 body - tells the client how much to top up."""

    credits_required: int
    credits_remaining: int


# ============================================================================
# API Key Management Models
# ============================================================================


class CamelModel(BaseModel):
    """Key management bodies are camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateAPIKeyRequest(BaseModel):
    """POST /api-keys request body. Length rules are enforced by the service."""

    name: str = ""


class APIKeyResponse(CamelModel):
    """Public view of an API key - never contains the secret or its hash."""

    id: UUID
    name: str
    prefix: str
    last_used_at: datetime | None = None
    created_at: datetime

    @classmethod
    def from_domain(cls, info: ApiKeyInfo) -> "APIKeyResponse":
        return cls(
            id=info.key_id,
            name=info.name,
            prefix=info.prefix,
            last_used_at=info.last_used_at,
            created_at=info.created_at,
        )


class CreatedAPIKeyResponse(CamelModel):
    """POST /api-keys response - the only place the plaintext secret appears."""

    id: UUID
    name: str
    prefix: str
    created_at: datetime
    plaintext_secret: str = Field(..., description="Shown once. Store it securely.")


class APIKeyListResponse(BaseModel):
    """GET /api-keys response."""

    keys: list[APIKeyResponse]


class RevokeAPIKeyResponse(BaseModel):
    """DELETE /api-keys/{id} response."""

    success: bool = True


# ============================================================================
# Tool Invocation Models
# ============================================================================


class ToolInvocationResponse(BaseModel):
    """POST /v1/{tool} success response."""

    success: bool = True
    data: dict[str, Any]
    credits_used: int
    credits_remaining: int
    generation_id: UUID


# ============================================================================
# Credits / Profile Models
# ============================================================================


class CreditsData(BaseModel):
    """Balance, plan and the price table."""

    credits: int
    plan: str
    tool_costs: dict[str, int]


class CreditsResponse(BaseModel):
    """GET /v1/user/credits response."""

    success: bool = True
    data: CreditsData


class TransactionResponse(BaseModel):
    """A single credit transaction."""

    id: UUID
    amount: int
    type: str
    description: str | None = None
    tool_type: str | None = None
    generation_id: UUID | None = None
    created_at: datetime

    @classmethod
    def from_domain(cls, tx: TransactionData) -> "TransactionResponse":
        return cls(
            id=tx.transaction_id,
            amount=tx.amount,
            type=tx.transaction_type.value,
            description=tx.description,
            tool_type=tx.tool_type.value if tx.tool_type else None,
            generation_id=tx.generation_id,
            created_at=tx.created_at,
        )


class TransactionListData(BaseModel):
    """Transaction history payload."""

    transactions: list[TransactionResponse]
    count: int


class TransactionListResponse(BaseModel):
    """GET /v1/user/transactions response."""

    success: bool = True
    data: TransactionListData


class GenerationResponse(BaseModel):
    """A persisted generation."""

    id: UUID
    tool_type: str
    title: str | None = None
    input: dict[str, Any]
    output: dict[str, Any]
    credits_used: int
    created_at: datetime

    @classmethod
    def from_domain(cls, generation: GenerationData) -> "GenerationResponse":
        return cls(
            id=generation.generation_id,
            tool_type=generation.tool_type.value,
            title=generation.title,
            input=generation.input,
            output=generation.output,
            credits_used=generation.credits_used,
            created_at=generation.created_at,
        )


class GenerationListData(BaseModel):
    """Generation listing payload."""

    generations: list[GenerationResponse]
    count: int


class GenerationListResponse(BaseModel):
    """GET /v1/generations response."""

    success: bool = True
    data: GenerationListData


class ProfileSummary(BaseModel):
    """Profile fields shown to the signed-in user."""

    id: UUID
    credits: int
    plan: str
    email: str | None = None
    name: str | None = None
    created_at: datetime

    @classmethod
    def from_domain(cls, profile: ProfileData) -> "ProfileSummary":
        return cls(
            id=profile.profile_id,
            credits=profile.credits,
            plan=profile.plan.value,
            email=profile.email,
            name=profile.display_name,
            created_at=profile.created_at,
        )


class UserOverviewResponse(BaseModel):
    """GET /api/user response."""

    profile: ProfileSummary
    recent_transactions: list[TransactionResponse]
    recent_generations: list[GenerationResponse]


# ============================================================================
# Webhook Models
# ============================================================================


class WebhookAckResponse(BaseModel):
    """Acknowledgement returned to the payment provider."""

    received: bool = True
    status: str
    event_id: str
