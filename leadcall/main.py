"""
FastAPI Application Entry Point
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from leadcall.api.v1.endpoints import health
from leadcall.api.v1.routes import api_router
from leadcall.core.config import Settings
from leadcall.core.container import ServiceContainer
from leadcall.domain.interfaces.crm_client import CRMAPIError
from leadcall.domain.models.lead import LeadValidationError
from leadcall.domain.services.token_manager import TokenRefreshError

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Map domain errors to JSON error responses."""

    @app.exception_handler(CRMAPIError)
    async def crm_error_handler(request: Request, exc: CRMAPIError):
        logger.error(f"CRM error on {request.url.path}: {exc!r}")
        status_code = exc.status if exc.status and 400 <= exc.status < 600 else 502
        return JSONResponse(
            status_code=status_code,
            content={"success": False, "error": exc.message, "code": exc.code}
        )

    @app.exception_handler(TokenRefreshError)
    async def token_error_handler(request: Request, exc: TokenRefreshError):
        logger.error(f"CRM authentication unavailable on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=503,
            content={"success": False, "error": "CRM authentication failed", "code": "TOKEN_REFRESH_FAILED"}
        )

    @app.exception_handler(LeadValidationError)
    async def lead_validation_handler(request: Request, exc: LeadValidationError):
        logger.warning(f"Lead rejected: {exc}")
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Validation failed", "details": [str(exc)]}
        )


def create_app(
    settings: Optional[Settings] = None,
    container: Optional[ServiceContainer] = None
) -> FastAPI:
    """
    Build the application.

    A prebuilt container (tests) is used as-is; otherwise one is built
    from settings when the lifespan starts.
    """
    settings = settings or (container.settings if container else Settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan - startup and shutdown events.

        Startup:
        - Validates provider configurations (fatal in production)
        - Builds services and starts the idempotency sweep

        Shutdown:
        - Cancels pending calls, stops the sweep, closes HTTP clients
        """
        logger.info("Starting Lead Call Engine...")

        from leadcall.core.validation import validate_providers_on_startup
        validate_providers_on_startup(settings, strict=settings.is_production)

        app.state.container = container or ServiceContainer.build(settings)
        await app.state.container.startup()

        logger.info("Lead Call Engine started successfully")

        yield  # Application is running

        logger.info("Shutting down Lead Call Engine...")
        try:
            await app.state.container.shutdown()
        except Exception as e:
            logger.error(f"Error during shutdown: {e}", exc_info=True)
        logger.info("Lead Call Engine shutdown complete")

    app = FastAPI(
        title="Lead Call Engine",
        description="Lead ingestion into Zoho CRM with automated IVR follow-up calls",
        version="1.0.0",
        lifespan=lifespan
    )

    # Container is reachable before startup for tests driving the app without a lifespan
    if container is not None:
        app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(api_router, prefix=settings.api_prefix)

    return app


_settings = Settings()
configure_logging(_settings.log_level)
app = create_app(_settings)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
