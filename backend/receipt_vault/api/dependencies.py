"""Service construction and FastAPI dependencies.

All outbound clients (database engine, blob store, entitlement gate,
access-token issuer) are built once per process by ``build_services`` at
startup, after the configuration has been validated, and stored on
``app.state.services``.  Route handlers receive them through the
dependency functions below, which keeps them swappable in tests via
``app.dependency_overrides``.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from typing import AsyncGenerator, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from receipt_vault.core.config import Settings, validate_settings
from receipt_vault.core.database import build_engine, build_sessionmaker, normalise_database_url
from receipt_vault.core.errors import UnauthenticatedError, UnauthorizedError
from receipt_vault.models.enums import EntitlementBackend
from receipt_vault.services.access_token_service import AccessTokenIssuer
from receipt_vault.services.entitlement_service import (
    EntitlementGate,
    LocalEntitlementGate,
    SchematicAPI,
    SchematicEntitlementGate,
)
from receipt_vault.services.receipt_repository import ExtractionWriter, ReceiptRepository
from receipt_vault.services.storage_service import BlobStore, build_blob_store
from receipt_vault.services.upload_service import UploadOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    blob_store: BlobStore
    entitlement_gate: EntitlementGate
    access_token_issuer: Optional[AccessTokenIssuer]


def build_services(cfg: Settings) -> Services:
    """Validate ``cfg`` and construct every client the API needs.

    Raises:
        ConfigurationError: when the configuration is unusable.
    """
    validate_settings(cfg)

    db_url = normalise_database_url(cfg.DATABASE_URL, allow_sqlite_fallback=cfg.DB_DEV_FALLBACK_SQLITE)
    engine = build_engine(db_url, echo=cfg.DB_ECHO)
    session_factory = build_sessionmaker(engine)
    blob_store = build_blob_store(cfg)

    schematic: Optional[SchematicAPI] = None
    if cfg.SCHEMATIC_API_KEY:
        schematic = SchematicAPI(
            cfg.SCHEMATIC_API_KEY,
            base_url=cfg.SCHEMATIC_API_URL,
            timeout=cfg.SCHEMATIC_TIMEOUT_SECONDS,
        )

    gate: EntitlementGate
    if EntitlementBackend(cfg.ENTITLEMENT_BACKEND.lower()) is EntitlementBackend.LOCAL:
        gate = LocalEntitlementGate(session_factory, cfg.LOCAL_MONTHLY_SCAN_ALLOCATION)
    else:
        # validate_settings guarantees the API key for this backend
        gate = SchematicEntitlementGate(schematic)  # type: ignore[arg-type]

    issuer = AccessTokenIssuer(schematic, resource_type=cfg.ACCESS_TOKEN_RESOURCE_TYPE) if schematic else None
    logger.info(
        "[startup] services built storage=%s entitlements=%s access_tokens=%s",
        cfg.STORAGE_BACKEND, cfg.ENTITLEMENT_BACKEND, "enabled" if issuer else "disabled",
    )
    return Services(
        settings=cfg,
        engine=engine,
        session_factory=session_factory,
        blob_store=blob_store,
        entitlement_gate=gate,
        access_token_issuer=issuer,
    )


# -----------------------------------------------------------------------------
# Dependencies


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


async def get_db_session(services: Services = Depends(get_services)) -> AsyncGenerator[AsyncSession, None]:
    """Yield a request-scoped database session."""
    async with services.session_factory() as session:
        yield session


async def get_receipt_repository(
    session: AsyncSession = Depends(get_db_session),
    services: Services = Depends(get_services),
) -> ReceiptRepository:
    return ReceiptRepository(session, services.blob_store)


async def get_extraction_writer(session: AsyncSession = Depends(get_db_session)) -> ExtractionWriter:
    return ExtractionWriter(session)


def get_upload_orchestrator(services: Services = Depends(get_services)) -> UploadOrchestrator:
    cfg = services.settings
    return UploadOrchestrator(
        services.session_factory,
        services.blob_store,
        services.entitlement_gate,
        feature_key=cfg.ENTITLEMENT_FEATURE_KEY,
        max_upload_size=cfg.MAX_UPLOAD_SIZE,
    )


def get_blob_store(services: Services = Depends(get_services)) -> BlobStore:
    return services.blob_store


def get_entitlement_gate(services: Services = Depends(get_services)) -> EntitlementGate:
    return services.entitlement_gate


def get_access_token_issuer(services: Services = Depends(get_services)) -> Optional[AccessTokenIssuer]:
    return services.access_token_issuer


def require_internal_api_key(
    x_internal_api_key: Optional[str] = Header(None),
    cfg: Settings = Depends(get_settings),
) -> None:
    """Gate for routes reserved to the extraction actor."""
    if not x_internal_api_key:
        raise UnauthenticatedError("Missing internal API key")
    if not cfg.INTERNAL_API_KEY or not hmac.compare_digest(x_internal_api_key, cfg.INTERNAL_API_KEY):
        raise UnauthorizedError("Invalid internal API key")
