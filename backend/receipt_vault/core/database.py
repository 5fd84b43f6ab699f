"""Database configuration and session management.

This module builds the asynchronous SQLAlchemy engine and session factory
for the application.  Nothing is created at import time: the API
constructs one engine per process in ``build_services`` and hands the
session factory to the repository layer.  Connection strings are
normalised for async drivers (``sqlite`` -> ``aiosqlite``, Postgres ->
``psycopg`` with TLS required unless explicitly disabled).
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from receipt_vault.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

SQLITE_FALLBACK_URL = "sqlite+aiosqlite:///./receipt_vault.db"

# Declarative base
Base = declarative_base()


def normalise_database_url(db_url: Optional[str], allow_sqlite_fallback: bool = False) -> str:
    """Return an async-driver URL for ``db_url``.

    Raises:
        ConfigurationError: when no URL is given and the SQLite fallback is disabled.
    """
    if not db_url:
        if not allow_sqlite_fallback:
            raise ConfigurationError(
                "No database URL provided via DATABASE_URL; with "
                "DB_DEV_FALLBACK_SQLITE=false, a database URL is required."
            )
        return SQLITE_FALLBACK_URL

    url_obj = make_url(db_url)
    driver = url_obj.drivername or ""
    # SQLite: upgrade to aiosqlite
    if driver == "sqlite":
        url_obj = url_obj.set(drivername="sqlite+aiosqlite")
    # PostgreSQL: normalize driver and require TLS unless told otherwise
    elif driver in {"postgresql", "postgres", "postgresql+psycopg2", "postgresql+asyncpg"}:
        q = dict(url_obj.query or {})
        if not q.get("sslmode"):
            q["sslmode"] = "require"
        url_obj = url_obj.set(drivername="postgresql+psycopg", query=q)
    return url_obj.render_as_string(hide_password=False)


def build_engine(db_url: str, echo: bool = False) -> AsyncEngine:
    """Create the async engine for an already-normalised URL."""
    engine_kwargs: dict[str, Any] = dict(echo=echo)
    if not db_url.startswith("sqlite"):
        engine_kwargs["pool_pre_ping"] = True
    masked = make_url(db_url).render_as_string(hide_password=True)
    logger.info("[db] creating async engine url=%s", masked)
    return create_async_engine(db_url, **engine_kwargs)


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables defined on the declarative ``Base``.

    Typically called during application startup.  Production deployments
    that manage schema separately can skip it; ``create_all`` never drops or
    alters existing tables.
    """
    # Import all models to ensure metadata is populated
    from receipt_vault.models import tables  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
