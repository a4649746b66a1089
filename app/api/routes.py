"""
Public API routes - Bearer-authenticated (API key) endpoints.

NO DICTIONARIES - All request/response models are typed pydantic models.
"""

from typing import Annotated, Any

from fastapi import APIRouter, Query, Request
from structlog import get_logger

from app.api.dependencies import (
    ApiKeyOwner,
    GenerationStoreDep,
    LedgerDep,
    ToolInvocationDep,
)
from app.config import settings
from app.exceptions import InputValidationError, ResourceNotFoundError
from app.models.api import (
    CreditsData,
    CreditsResponse,
    GenerationListData,
    GenerationListResponse,
    GenerationResponse,
    ToolInvocationResponse,
    TransactionListData,
    TransactionListResponse,
    TransactionResponse,
)
from app.models.domain import InvocationOutcome, ToolType
from app.services.generations import clamp_limit

logger = get_logger(__name__)
router = APIRouter(prefix="/v1", tags=["tools"])

DEFAULT_TRANSACTION_LIMIT = 50


def parse_tool_path(raw: str) -> ToolType:
    """
    Resolve a `{tool}` path segment (kebab or snake case).

    Raises:
        ResourceNotFoundError: Not a known tool
    """
    try:
        return ToolType.parse(raw)
    except ValueError as e:
        raise ResourceNotFoundError(f"Unknown tool: {raw}") from e


def parse_tool_filter(raw: str | None) -> ToolType | None:
    """
    Resolve an optional `tool_type` query filter.

    Raises:
        InputValidationError: Not a known tool
    """
    if raw is None or raw == "":
        return None
    try:
        return ToolType.parse(raw)
    except ValueError as e:
        raise InputValidationError(f"Unknown tool_type: {raw}") from e


async def read_json_body(request: Request) -> Any:
    """
    Parse the request body as JSON.

    Raises:
        InputValidationError: Empty or invalid JSON
    """
    try:
        return await request.json()
    except ValueError as e:
        raise InputValidationError("Request body must be valid JSON") from e


def invocation_response(outcome: InvocationOutcome) -> ToolInvocationResponse:
    return ToolInvocationResponse(
        data=outcome.result,
        credits_used=outcome.credits_used,
        credits_remaining=outcome.credits_remaining,
        generation_id=outcome.generation_id,
    )


# =============================================================================
# Account
# =============================================================================


@router.get("/user/credits", response_model=CreditsResponse)
async def get_credits(external_id: ApiKeyOwner, ledger: LedgerDep) -> CreditsResponse:
    """Current balance, plan and the tool price table."""
    profile = await ledger.get_or_create_profile(external_id)
    return CreditsResponse(
        data=CreditsData(
            credits=profile.credits,
            plan=profile.plan.value,
            tool_costs=ledger.price_table.as_public_dict(),
        )
    )


@router.get("/user/transactions", response_model=TransactionListResponse)
async def list_transactions(
    external_id: ApiKeyOwner,
    ledger: LedgerDep,
    limit: Annotated[int, Query()] = DEFAULT_TRANSACTION_LIMIT,
) -> TransactionListResponse:
    """Credit transaction history, newest first."""
    effective = clamp_limit(limit, DEFAULT_TRANSACTION_LIMIT, settings.generations_max_limit)
    transactions = await ledger.transaction_history(external_id, effective)
    return TransactionListResponse(
        data=TransactionListData(
            transactions=[TransactionResponse.from_domain(tx) for tx in transactions],
            count=len(transactions),
        )
    )


@router.get("/generations", response_model=GenerationListResponse)
async def list_generations(
    external_id: ApiKeyOwner,
    generations: GenerationStoreDep,
    limit: Annotated[int | None, Query()] = None,
    tool_type: Annotated[str | None, Query()] = None,
) -> GenerationListResponse:
    """Past generations, newest first. `limit` is clamped to the configured maximum."""
    records = await generations.list_for_user(external_id, limit, parse_tool_filter(tool_type))
    return GenerationListResponse(
        data=GenerationListData(
            generations=[GenerationResponse.from_domain(record) for record in records],
            count=len(records),
        )
    )


# =============================================================================
# Tools
# =============================================================================


@router.post("/{tool}", response_model=ToolInvocationResponse)
async def invoke_tool(
    tool: str,
    request: Request,
    external_id: ApiKeyOwner,
    service: ToolInvocationDep,
) -> ToolInvocationResponse:
    """
    Run a tool and charge its credit cost.

    Credits are only debited after the generation succeeds.
    """
    tool_type = parse_tool_path(tool)
    payload = await read_json_body(request)

    outcome = await service.invoke(external_id, tool_type, payload)

    logger.info(
        "tool_invoked",
        external_id=external_id,
        tool_type=tool_type.value,
        generation_id=str(outcome.generation_id),
        credits_used=outcome.credits_used,
        credits_remaining=outcome.credits_remaining,
    )
    return invocation_response(outcome)
