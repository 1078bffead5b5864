"""
FastAPI application entry point.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from callcenter.config import get_settings
from callcenter.shared.database import get_database_manager
from callcenter.shared.exceptions import AppError
from callcenter.shared.logging import (
    correlation_id_var,
    get_logger,
    log_with_context,
    setup_logging,
)
from callcenter.telephony.config import get_telephony_config
from callcenter.telephony.factory import get_telephony_router
from callcenter.telephony.health import ProviderHealthMonitor
from callcenter.telephony.interface import (
    CallNotFoundError,
    ProviderConnectionError,
    TelephonyProviderError,
    WebhookParseError,
)
from callcenter.telephony.routes import router as providers_router
from callcenter.telephony.webhooks.router import router as telephony_webhooks_router

logger = get_logger(__name__)

# Domain error code -> HTTP status
ERROR_STATUS_CODES: dict[str, int] = {
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "VALIDATION_ERROR": status.HTTP_400_BAD_REQUEST,
    "PROVIDER_NOT_CONFIGURED": status.HTTP_404_NOT_FOUND,
    "UNKNOWN_PROVIDER": status.HTTP_400_BAD_REQUEST,
    "ROUTING_FAILED": status.HTTP_502_BAD_GATEWAY,
    "NO_BACKUP_AVAILABLE": status.HTTP_409_CONFLICT,
    "ACTIVE_PROVIDER": status.HTTP_400_BAD_REQUEST,
    "CIRCUIT_OPEN": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _error_response(status_code: int, code: str, message: str, **extra: object) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": {"code": code, "message": message, **extra}},
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    setup_logging()
    settings = get_settings()
    telephony_cfg = get_telephony_config()
    db_manager = get_database_manager()

    logger.info("Application starting", extra={"env": settings.app_env})

    if settings.database_auto_create:
        await db_manager.create_all()
        logger.info("Database tables ensured")

    monitor: ProviderHealthMonitor | None = None
    if settings.health_check_enabled:
        monitor = ProviderHealthMonitor(
            get_telephony_router(),
            interval_seconds=telephony_cfg.health_check_interval_seconds,
        )
        monitor.start()
        logger.info("Provider health monitor enabled; background task created")
    app.state.health_monitor = monitor

    yield

    logger.info("Shutting down application")

    if monitor is not None:
        await monitor.stop()

    await get_telephony_router().registry.aclose()
    await db_manager.close()
    logger.info("Application shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Callcenter Telephony API",
        description="Per-tenant telephony provider routing with circuit breaking and failover",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    @app.middleware("http")
    async def correlation_id_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        correlation_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = correlation_id_var.set(correlation_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)
        response.headers["X-Request-ID"] = correlation_id
        log_with_context(
            logger,
            logging.INFO,
            "Request handled",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
            correlation_id=correlation_id,
        )
        return response

    # Map domain exceptions to HTTP responses
    @app.exception_handler(AppError)
    async def _app_error(_: Request, exc: AppError) -> JSONResponse:
        status_code = ERROR_STATUS_CODES.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        if status_code >= 500:
            logger.warning(
                "Request failed with domain error",
                extra={"code": exc.code, "error": exc.message},
            )
        return _error_response(status_code, exc.code, exc.message, details=exc.details)

    @app.exception_handler(CallNotFoundError)
    async def _call_not_found(_: Request, exc: CallNotFoundError) -> JSONResponse:
        return _error_response(status.HTTP_404_NOT_FOUND, "CALL_NOT_FOUND", str(exc))

    @app.exception_handler(WebhookParseError)
    async def _webhook_parse(_: Request, exc: WebhookParseError) -> JSONResponse:
        return _error_response(
            status.HTTP_400_BAD_REQUEST,
            "INVALID_WEBHOOK_PAYLOAD",
            str(exc),
            error_code=exc.error_code,
        )

    # Raised only by the credential test paths (select/test); routing wraps its own.
    @app.exception_handler(ProviderConnectionError)
    async def _provider_test_failed(_: Request, exc: ProviderConnectionError) -> JSONResponse:
        return _error_response(
            status.HTTP_400_BAD_REQUEST,
            "PROVIDER_TEST_FAILED",
            str(exc),
            error_code=exc.error_code,
        )

    @app.exception_handler(TelephonyProviderError)
    async def _provider_error(_: Request, exc: TelephonyProviderError) -> JSONResponse:
        return _error_response(
            status.HTTP_502_BAD_GATEWAY,
            "PROVIDER_ERROR",
            str(exc),
            error_code=exc.error_code,
        )

    # Request validation (FastAPI/Pydantic) -> consistent 422 payload
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        errors = []
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            errors.append(
                {
                    "field": field,
                    "message": error["msg"],
                    "type": error["type"],
                }
            )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "detail": {
                    "code": "VALIDATION_ERROR",
                    "message": "Request validation failed",
                    "errors": errors,
                }
            },
        )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(providers_router)
    app.include_router(telephony_webhooks_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    return app


app = create_app()
