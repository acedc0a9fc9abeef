"""FastAPI application entry point."""
import traceback
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from sqlalchemy.ext.asyncio import AsyncEngine

from entitlements.api.v1 import admin, authorize, features, health, plans, usage
from entitlements.config import settings
from entitlements.database import AsyncSessionLocal, engine
from entitlements.exceptions import StoreUnavailableError, TransientConflictError
from entitlements.middleware.logging import LoggingMiddleware, setup_logging
from entitlements.middleware.metrics import MetricsMiddleware
from entitlements.models.base import utcnow
from entitlements.schemas.error import REMEDIATION_HINTS, ErrorCode, ErrorDetail, ErrorResponse
from entitlements.services.quota_gate import QuotaGate, build_quota_gate

# Setup structured logging
setup_logging()
logger = structlog.get_logger(__name__)


def _request_id(request: Request) -> str:
    return request.headers.get("x-request-id", f"req_{uuid.uuid4().hex[:12]}")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the quota gate on startup unless one was injected, dispose the engine on shutdown."""
    logger.info("application_starting", env=settings.app_env)
    if getattr(app.state, "quota_gate", None) is None:
        app.state.engine = engine
        app.state.quota_gate = build_quota_gate(settings, AsyncSessionLocal)
        logger.info("quota_gate_ready", plans=len(app.state.quota_gate.catalog.list_plans()))
    yield
    logger.info("application_shutting_down")
    await app.state.engine.dispose()


def create_app(gate: QuotaGate | None = None, db_engine: AsyncEngine | None = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        gate: Pre-built quota gate; built from settings at startup when omitted
        db_engine: Engine used by the readiness probe, defaults to the application engine
    """
    app = FastAPI(
        title="Tenant Entitlements Service",
        description="Plan-based feature gating and usage quotas for multi-tenant applications",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.quota_gate = gate
    app.state.engine = db_engine or engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(LoggingMiddleware)

    # Mount Prometheus metrics endpoint
    app.mount("/metrics", make_asgi_app())

    if settings.otel_enabled:
        from entitlements.tracing import setup_tracing

        setup_tracing(app, app.state.engine)

    _register_exception_handlers(app)

    app.include_router(health.router, tags=["Health"])
    app.include_router(authorize.router, prefix="/v1")
    app.include_router(usage.router, prefix="/v1")
    app.include_router(features.router, prefix="/v1")
    app.include_router(plans.router, prefix="/v1")
    app.include_router(admin.router, prefix="/v1")

    @app.get("/", tags=["Root"])
    async def root() -> dict[str, str]:
        """Root endpoint with API information."""
        return {
            "service": "Tenant Entitlements Service",
            "version": "0.1.0",
            "status": "operational",
            "docs": "/docs",
        }

    return app


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Return 422 with field-level validation errors."""
        request_id = _request_id(request)
        details = [
            ErrorDetail(
                code=ErrorCode.INVALID_AMOUNT if "amount" in error["loc"] else ErrorCode.VALIDATION_ERROR,
                message=error["msg"],
                field=".".join(str(loc) for loc in error["loc"]),
                value=error.get("input"),
            )
            for error in exc.errors()
        ]

        logger.warning(
            "validation_error",
            path=request.url.path,
            method=request.method,
            request_id=request_id,
            error_count=len(details),
        )

        response = ErrorResponse(
            error="ValidationError",
            message="Request validation failed",
            details=details,
            remediation="Check the API documentation for correct request format at /docs",
            request_id=request_id,
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=response.model_dump(mode="json"),
        )

    @app.exception_handler(TransientConflictError)
    async def conflict_exception_handler(request: Request, exc: TransientConflictError) -> JSONResponse:
        """Return 409; the whole request is safe to retry."""
        request_id = _request_id(request)
        logger.warning("transient_conflict", path=request.url.path, request_id=request_id, **exc.details)

        response = ErrorResponse(
            error="TransientConflict",
            message=exc.message,
            details=[ErrorDetail(code=ErrorCode.TRANSIENT_CONFLICT, message=exc.message)],
            remediation=REMEDIATION_HINTS[ErrorCode.TRANSIENT_CONFLICT],
            request_id=request_id,
        )
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=response.model_dump(mode="json"),
            headers={"Retry-After": "1"},
        )

    @app.exception_handler(StoreUnavailableError)
    async def store_exception_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
        """Return 503; the request was not admitted even if its write may have landed."""
        request_id = _request_id(request)
        logger.error(
            "store_unavailable_response",
            path=request.url.path,
            request_id=request_id,
            operation=exc.operation,
            outcome_unknown=exc.outcome_unknown,
        )

        message = "Subscription store temporarily unavailable" if settings.app_env == "production" else exc.message
        response = ErrorResponse(
            error="StoreUnavailable",
            message="The request could not be authorized",
            details=[ErrorDetail(code=ErrorCode.STORE_UNAVAILABLE, message=message, value=exc.details)],
            remediation=REMEDIATION_HINTS[ErrorCode.STORE_UNAVAILABLE],
            request_id=request_id,
        )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json"),
            headers={"Retry-After": "5"},
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Return 500 without exposing internals."""
        request_id = _request_id(request)
        logger.exception(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            request_id=request_id,
            exception_type=type(exc).__name__,
            stack_trace=traceback.format_exc(),
        )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "InternalServerError",
                "message": "An unexpected error occurred",
                "details": [
                    {
                        "code": ErrorCode.INTERNAL_ERROR,
                        "message": str(exc) if settings.debug else "Internal server error",
                    }
                ],
                "remediation": "Please contact support with the request ID",
                "request_id": request_id,
                "timestamp": utcnow().isoformat() + "Z",
            },
        )


app = create_app()
