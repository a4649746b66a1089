"""
Web session routes - the signed-in web UI's view of the same ledger.

Tool invocations here follow exactly the same protocol as the bearer
`/v1/{tool}` endpoints; only the authentication path differs.
"""

from fastapi import APIRouter, Request
from structlog import get_logger

from app.api.dependencies import (
    GenerationStoreDep,
    LedgerDep,
    SessionUser,
    ToolInvocationDep,
)
from app.api.routes import invocation_response, parse_tool_path, read_json_body
from app.models.api import (
    GenerationResponse,
    ProfileSummary,
    ToolInvocationResponse,
    TransactionResponse,
    UserOverviewResponse,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/api", tags=["session"])

RECENT_ITEMS = 10


@router.post("/generate/{tool}", response_model=ToolInvocationResponse)
async def generate(
    tool: str,
    request: Request,
    user: SessionUser,
    service: ToolInvocationDep,
) -> ToolInvocationResponse:
    tool_type = parse_tool_path(tool)
    payload = await read_json_body(request)

    outcome = await service.invoke(
        user.external_id,
        tool_type,
        payload,
        email=user.email,
        display_name=user.name,
    )

    logger.info(
        "tool_invoked",
        external_id=user.external_id,
        tool_type=tool_type.value,
        generation_id=str(outcome.generation_id),
        credits_used=outcome.credits_used,
        via="session",
    )
    return invocation_response(outcome)


@router.get("/user", response_model=UserOverviewResponse)
async def get_user(
    user: SessionUser,
    ledger: LedgerDep,
    generations: GenerationStoreDep,
) -> UserOverviewResponse:
    """Profile summary plus the most recent transactions and generations."""
    profile = await ledger.get_or_create_profile(user.external_id, user.email, user.name)
    transactions = await ledger.transaction_history(user.external_id, RECENT_ITEMS)
    recent = await generations.list_for_user(user.external_id, RECENT_ITEMS)

    return UserOverviewResponse(
        profile=ProfileSummary.from_domain(profile),
        recent_transactions=[TransactionResponse.from_domain(tx) for tx in transactions],
        recent_generations=[GenerationResponse.from_domain(record) for record in recent],
    )
