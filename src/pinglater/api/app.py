"""FastAPI application for PingLater."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pinglater import __version__
from pinglater.config import Settings
from pinglater.exceptions import (
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    PingLaterError,
    ValidationError,
)
from pinglater.logging import clear_context, configure_logging, get_logger
from pinglater.service import WebhookService

from .router import router, set_service

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifespan.

    Starts the WebhookService (storage and retry scheduler) on startup
    and drains deliveries and stops it on shutdown.
    """
    settings: Settings = app.state.settings

    configure_logging(level=settings.log_level, format=settings.log_format)
    logger.info(
        "Starting PingLater API",
        log_level=settings.log_level,
        log_format=settings.log_format,
    )

    service: WebhookService = app.state.service or WebhookService.create(settings)
    await service.start()
    set_service(service)

    yield

    await service.stop()
    set_service(None)


def create_app(
    settings: Settings | None = None,
    service: WebhookService | None = None,
) -> FastAPI:
    """Create a FastAPI application.

    Args:
        settings: Optional settings. Uses environment if None.
        service: Optional pre-built service (e.g. with in-memory storage).

    Returns:
        Configured FastAPI application.

    Example:
        ```python
        from pinglater.api import create_app

        app = create_app()
        # Run with: uvicorn pinglater.api:app --reload
        ```
    """
    if settings is None:
        settings = service.settings if service is not None else Settings()

    app = FastAPI(
        title="PingLater",
        description="Webhooks for your chat account.",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings
    app.state.service = service

    if settings.cors_enabled:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allow_origins,
            allow_methods=settings.cors_allow_methods,
            allow_headers=settings.cors_allow_headers,
        )

    @app.middleware("http")
    async def reset_log_context(request: Request, call_next):  # type: ignore[no-untyped-def]
        """Drop per-request logging context once the response is produced."""
        try:
            return await call_next(request)
        finally:
            clear_context()

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Report malformed request bodies as 400 validation errors."""
        errors = exc.errors()
        first = errors[0] if errors else {}
        loc = [str(part) for part in first.get("loc", ()) if part != "body"]
        error = ValidationError(".".join(loc) or "body", first.get("msg", "invalid request"))
        logger.warning("Validation error", field=error.field, path=str(request.url))
        return JSONResponse(status_code=400, content=error.to_dict())

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        """Handle validation errors with 400 status."""
        logger.warning(
            "Validation error", field=exc.field, error=exc.message, path=str(request.url)
        )
        return JSONResponse(status_code=400, content=exc.to_dict())

    @app.exception_handler(NotFoundError)
    async def not_found_error_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        """Handle not found errors with 404 status."""
        logger.info(
            "Resource not found",
            resource_type=exc.resource_type,
            resource_id=exc.resource_id,
            path=str(request.url),
        )
        return JSONResponse(status_code=404, content=exc.to_dict())

    @app.exception_handler(AuthenticationError)
    async def authentication_error_handler(
        request: Request, exc: AuthenticationError
    ) -> JSONResponse:
        """Handle authentication errors with 401 status."""
        logger.warning("Authentication failed", error=exc.message, path=str(request.url))
        return JSONResponse(status_code=401, content=exc.to_dict())

    @app.exception_handler(AuthorizationError)
    async def authorization_error_handler(
        request: Request, exc: AuthorizationError
    ) -> JSONResponse:
        """Handle authorization errors with 403 status."""
        logger.warning("Authorization failed", error=exc.message, path=str(request.url))
        return JSONResponse(status_code=403, content=exc.to_dict())

    @app.exception_handler(PingLaterError)
    async def pinglater_error_handler(request: Request, exc: PingLaterError) -> JSONResponse:
        """Handle all other PingLater errors with 500 status."""
        logger.error("PingLater error", error=exc.message, code=exc.code, path=str(request.url))
        return JSONResponse(status_code=500, content=exc.to_dict())

    app.include_router(router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()


def main() -> None:
    """Serve the default app with uvicorn."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_config=None)
