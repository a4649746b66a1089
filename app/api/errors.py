"""
Exception Handlers - Map domain exceptions to stable JSON error bodies.

Every error body is {"success": false, "error": "<generic message>"}.
Raw upstream or database error text is never returned.
"""

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from structlog import get_logger

from app.exceptions import (
    APIKeyNotFoundError,
    AuthenticationError,
    IdempotencyConflictError,
    InputValidationError,
    InsufficientCreditsError,
    LedgerError,
    PaymentProviderError,
    ProfileNotFoundError,
    ResourceNotFoundError,
    StorageError,
    UpstreamFailureError,
    WebhookVerificationError,
)
from app.models.api import ErrorResponse, InsufficientCreditsResponse
from app.observability.metrics import metrics

logger = get_logger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content=ErrorResponse(error=message).model_dump()
    )


async def authentication_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, AuthenticationError)
    metrics.record_error("authentication", request.url.path)
    return _error(status.HTTP_401_UNAUTHORIZED, exc.message)


async def not_found_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, ResourceNotFoundError)
    # Same body whether the resource is missing or owned by someone else
    if isinstance(exc, APIKeyNotFoundError):
        message = "API key not found"
    elif isinstance(exc, ProfileNotFoundError):
        message = "Profile not found"
    else:
        message = exc.message
    return _error(status.HTTP_404_NOT_FOUND, message)


async def insufficient_credits_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, InsufficientCreditsError)
    body = InsufficientCreditsResponse(
        error="Insufficient credits",
        credits_required=exc.required,
        credits_remaining=exc.balance,
    )
    return JSONResponse(status_code=status.HTTP_402_PAYMENT_REQUIRED, content=body.model_dump())


async def input_validation_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, InputValidationError)
    return _error(status.HTTP_400_BAD_REQUEST, exc.message)


async def request_validation_handler(request: Request, exc: Exception) -> JSONResponse:
    """Query/path parameter errors are 400, like every other input error."""
    assert isinstance(exc, RequestValidationError)
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ())[1:]) or "request"
    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        field=field,
        error_type=first.get("type"),
    )
    return _error(status.HTTP_400_BAD_REQUEST, f"Invalid {field}: {first.get('msg', 'invalid')}")


async def upstream_failure_handler(request: Request, exc: Exception) -> JSONResponse:
    metrics.record_error("upstream_failure", request.url.path)
    return _error(status.HTTP_502_BAD_GATEWAY, "Generation failed. Please try again.")


async def idempotency_conflict_handler(request: Request, exc: Exception) -> JSONResponse:
    return _error(status.HTTP_409_CONFLICT, "Request already applied")


async def webhook_verification_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, WebhookVerificationError)
    metrics.record_error("webhook_verification", request.url.path)
    return _error(status.HTTP_400_BAD_REQUEST, exc.message)


async def payment_provider_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, PaymentProviderError)
    logger.error("payment_provider_error", path=request.url.path, error=exc.message)
    return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Payment provider not configured")


async def storage_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, LedgerError)
    metrics.record_error(type(exc).__name__, request.url.path)
    logger.error(
        "request_storage_failure",
        path=request.url.path,
        method=request.method,
        error=str(exc),
    )
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    """Install all domain exception handlers on the app."""
    app.add_exception_handler(AuthenticationError, authentication_error_handler)
    app.add_exception_handler(ResourceNotFoundError, not_found_handler)
    app.add_exception_handler(InsufficientCreditsError, insufficient_credits_handler)
    app.add_exception_handler(InputValidationError, input_validation_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(UpstreamFailureError, upstream_failure_handler)
    app.add_exception_handler(IdempotencyConflictError, idempotency_conflict_handler)
    app.add_exception_handler(WebhookVerificationError, webhook_verification_handler)
    app.add_exception_handler(PaymentProviderError, payment_provider_handler)
    app.add_exception_handler(StorageError, storage_error_handler)
    # Anything else from the domain hierarchy is an internal error
    app.add_exception_handler(LedgerError, storage_error_handler)
