"""Entry point for the FastAPI application.

``create_app`` constructs the FastAPI app, includes all routers and
registers the lifespan that builds the service clients (validating the
configuration first) and creates the database tables.  ``app`` is the
module-level instance served by uvicorn.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from receipt_vault.api.dependencies import Services, build_services
from receipt_vault.api.error_handlers import (
    generic_exception_handler,
    receipt_vault_exception_handler,
    validation_exception_handler,
)
from receipt_vault.api.routes.entitlements import router as entitlements_router
from receipt_vault.api.routes.internal import router as internal_router
from receipt_vault.api.routes.receipts import router as receipts_router
from receipt_vault.api.routes.storage import router as storage_router
from receipt_vault.core.config import Settings, settings
from receipt_vault.core.database import init_db
from receipt_vault.core.errors import ReceiptVaultError
from receipt_vault.core.observability import init_sentry

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_app(cfg: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """Build the application.

    ``services`` may be passed pre-built (tests); otherwise they are built
    from ``cfg`` at startup and disposed at shutdown.
    """
    cfg = cfg or (services.settings if services else settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting up...")
        if init_sentry("api", cfg):
            logger.info("Sentry SDK initialized (api)")
        owned = app.state.services is None
        if owned:
            app.state.services = build_services(cfg)
        await init_db(app.state.services.engine)
        yield
        logger.info("Shutting down...")
        if owned:
            await app.state.services.engine.dispose()
            app.state.services = None

    app = FastAPI(title=cfg.PROJECT_NAME, version="1.0.0", lifespan=lifespan)
    app.state.settings = cfg
    app.state.services = services

    env_is_dev = (cfg.ENVIRONMENT or "development").lower() == "development"
    allow_origins = ["*"] if env_is_dev else list(cfg.BACKEND_CORS_ORIGINS or [])
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=not env_is_dev,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register custom exception handlers
    app.add_exception_handler(ReceiptVaultError, receipt_vault_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # Include routers
    app.include_router(receipts_router)
    app.include_router(entitlements_router)
    app.include_router(internal_router)
    app.include_router(storage_router)

    @app.api_route("/health", methods=["GET", "HEAD"])
    async def health_check():
        """Health check endpoint (supports GET & HEAD)."""
        return {"status": "healthy"}

    return app


app = create_app()
