"""
Main Application - FastAPI application setup.
"""

import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from app.api.errors import register_exception_handlers
from app.api.key_routes import router as key_router
from app.api.routes import router
from app.api.session_routes import router as session_router
from app.api.webhook_routes import router as webhook_router
from app.config import settings
from app.db.migration_runner import run_migrations_async
from app.db.session import close_engines, get_engine
from app.exceptions import StorageError
from app.observability import get_logger, log_context, setup_logging, setup_tracing
from app.observability.metrics import get_metrics_handler, track_http_request
from app.observability.tracing import instrument_fastapi, instrument_sqlalchemy
from app.storage.factory import open_storage

# Setup logging before anything else
setup_logging()
logger = get_logger(__name__)


class ServiceInfoResponse(BaseModel):
    service: str
    version: str
    status: str = "running"


class HealthResponse(BaseModel):
    status: str
    storage_backend: str
    storage: str


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    # Startup
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        storage_backend=settings.storage_backend,
        tracing_enabled=settings.tracing_enabled,
        metrics_enabled=settings.metrics_enabled,
    )

    if settings.storage_backend == "sql":
        if settings.run_migrations_on_startup:
            await run_migrations_async()
        instrument_sqlalchemy(get_engine())

    yield

    # Shutdown
    logger.info("application_shutting_down")
    if settings.storage_backend == "sql":
        await close_engines()
        logger.info("database_engines_closed")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)

register_exception_handlers(app)

# Setup tracing
setup_tracing()
instrument_fastapi(app)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request logging middleware
@app.middleware("http")
async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Log all HTTP requests with timing."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    endpoint = request.url.path
    method = request.method

    with log_context(request_id=request_id), track_http_request(endpoint, method) as tracker:
        logger.info("request_started", method=method, path=endpoint)
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "request_failed",
                method=method,
                path=endpoint,
                error=str(e),
                exc_info=True,
            )
            raise

        tracker.set_status_code(response.status_code)
        logger.info(
            "request_completed",
            method=method,
            path=endpoint,
            status_code=response.status_code,
        )
        response.headers["X-Request-ID"] = request_id
        return response


# Register routes
app.include_router(router)  # Bearer (API key) routes
app.include_router(key_router)  # API key management (session)
app.include_router(session_router)  # Web UI routes (session)
app.include_router(webhook_router)  # Payment provider webhooks


@app.get("/", response_model=ServiceInfoResponse)
async def root() -> ServiceInfoResponse:
    """Root endpoint."""
    return ServiceInfoResponse(service=settings.api_title, version=settings.api_version)


@app.get("/health", response_model=HealthResponse)
async def health() -> Response:
    """Storage reachability check."""
    try:
        async with open_storage() as storage:
            reachable = await storage.ping()
    except (StorageError, SQLAlchemyError, OSError) as e:
        logger.error("health_check_failed", error=str(e))
        reachable = False

    body = HealthResponse(
        status="healthy" if reachable else "unhealthy",
        storage_backend=settings.storage_backend,
        storage="reachable" if reachable else "unreachable",
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK if reachable else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body.model_dump(),
    )


_render_metrics = get_metrics_handler()


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    return Response(content=_render_metrics(), media_type="text/plain; version=0.0.4")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
