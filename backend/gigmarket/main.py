"""
FastAPI application entry point with health endpoints and service routing.

This module provides the application factory with CORS configuration, health
check endpoints, the mapping of domain errors to HTTP responses, and startup
and shutdown lifecycle events for resource management.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from gigmarket.api.rate_limit import limiter
from gigmarket.api.v1.orders import router as orders_router
from gigmarket.core.config import Settings, get_settings
from gigmarket.core.exceptions import MarketplaceError
from gigmarket.core.logging import (
    clear_context,
    configure_logging,
    get_logger,
    get_request_id,
    log_performance,
    set_request_id,
)
from gigmarket.database.connection import (
    check_database_health,
    close_database_connections,
    init_database,
    init_models,
)

logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Application settings; resolved from the environment when omitted

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings)
        logger.info(
            "Application starting",
            environment=settings.environment,
            debug=settings.debug,
            version=settings.app_version,
        )

        with log_performance(logger, "application_startup"):
            init_database(settings)
            if settings.is_development or settings.is_test:
                await init_models()
            logger.info("Resources initialized successfully")

        yield

        logger.info("Application shutting down")
        with log_performance(logger, "application_shutdown"):
            await close_database_connections()
            logger.info("Resources cleaned up successfully")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Service marketplace order lifecycle API",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
        debug=settings.debug,
    )

    # Configure rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        """
        Middleware for request logging and correlation ID management.

        Sets request ID for correlation, logs request details, and measures
        response time. Clears context after request processing.
        """
        request_id = set_request_id(request.headers.get("X-Request-ID"))

        logger.info(
            "Request received",
            method=request.method,
            path=request.url.path,
            client_host=request.client.host if request.client else None,
        )

        try:
            with log_performance(
                logger,
                "request_processing",
                method=request.method,
                path=request.url.path,
            ):
                response = await call_next(request)

            response.headers["X-Request-ID"] = request_id

            logger.info(
                "Request completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
            )
            return response
        except Exception as e:
            logger.error(
                "Request failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise
        finally:
            clear_context()

    @app.exception_handler(MarketplaceError)
    async def marketplace_exception_handler(
        request: Request, exc: MarketplaceError
    ) -> JSONResponse:
        """Map domain errors to their HTTP status with the failing rule in details."""
        logger.info(
            "Request rejected",
            method=request.method,
            path=request.url.path,
            error_code=exc.code,
            status_code=exc.status_code,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=jsonable_encoder(
                {**exc.to_dict(), "request_id": get_request_id()}
            ),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.warning(
            "Request validation failed",
            method=request.method,
            path=request.url.path,
            errors=exc.errors(),
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=jsonable_encoder(
                {
                    "error": "validation_error",
                    "message": "Request validation failed",
                    "details": exc.errors(),
                    "request_id": get_request_id(),
                }
            ),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Handle unexpected exceptions with structured error response.

        Logs error with full context and returns generic error message
        to avoid exposing internal details.
        """
        logger.error(
            "Unhandled exception",
            method=request.method,
            path=request.url.path,
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "internal_error",
                "message": "An unexpected error occurred",
                "request_id": get_request_id(),
            },
        )

    @app.get("/health", tags=["Health"], summary="Health check endpoint")
    async def health_check() -> dict[str, str]:
        return {
            "status": "healthy",
            "service": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
        }

    @app.get("/ready", tags=["Health"], summary="Readiness check endpoint")
    async def readiness_check():
        """
        Readiness check endpoint for orchestration.

        Verifies the database is reachable before accepting traffic.
        """
        if not await check_database_health(max_retries=1):
            logger.warning("Readiness check failed", dependencies_ready=False)
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={
                    "status": "not_ready",
                    "service": settings.app_name,
                    "dependencies_ready": False,
                    "database": "unhealthy",
                },
            )

        return {
            "status": "ready",
            "service": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
            "dependencies_ready": True,
            "database": "healthy",
        }

    @app.get("/live", tags=["Health"], summary="Liveness check endpoint")
    async def liveness_check() -> dict[str, str]:
        return {
            "status": "alive",
            "service": settings.app_name,
            "version": settings.app_version,
        }

    app.include_router(orders_router, prefix=settings.api_v1_prefix, tags=["Orders"])

    return app


app = create_app()
