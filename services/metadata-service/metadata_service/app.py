"""
Metadata Service - FastAPI application.

Hosts the storage layer for provisioning metadata. The database provider
is resolved once in the lifespan handler; an invalid configuration aborts
startup before any request is served.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request

from .config import Settings
from .domain.exceptions import ConfigurationError
from .logging_config import setup_logging
from .providers import build_storage
from .routers import health_router

logger = structlog.get_logger(__name__)


def create_app(settings: Optional[Settings] = None, dynamodb_client=None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        settings: Service settings; read from the environment when omitted
        dynamodb_client: Pre-built boto3 DynamoDB client (tests)

    Returns:
        Configured application; storage is built when the app starts
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        setup_logging(settings.LOG_LEVEL, settings.SERVICE_NAME)
        logger.info("Starting Metadata Service...")

        try:
            storage = build_storage(settings, dynamodb_client=dynamodb_client)
        except ConfigurationError as e:
            logger.error("Invalid storage configuration", error=e.message, setting=e.setting)
            raise
        app.state.storage = storage
        logger.info("Storage initialized", provider=storage.provider.value)

        yield

        storage.close()
        app.state.storage = None
        logger.info("Metadata Service shut down complete")

    app = FastAPI(
        title="IDP Metadata Service",
        description="Provisioning metadata storage on PostgreSQL or DynamoDB",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        """Add request ID for distributed tracing."""
        request_id = request.headers.get("X-Request-ID", f"req-{id(request)}")
        structlog.contextvars.bind_contextvars(request_id=request_id)
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        structlog.contextvars.clear_contextvars()
        return response

    app.include_router(health_router.router)
    return app


def main() -> None:
    settings = Settings()
    uvicorn.run(
        create_app(settings),
        host=settings.SERVICE_HOST,
        port=settings.SERVICE_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
