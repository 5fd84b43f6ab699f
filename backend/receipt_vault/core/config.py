"""Configuration management.

This module defines a ``Settings`` class that reads configuration values
from environment variables and provides sensible defaults.  ``.env``
support is implemented by loading files from the repository root in a
defined order.  You can override any value via environment variables.

Settings are validated once at startup by :func:`validate_settings` so a
missing API key or storage endpoint surfaces as a single startup error
rather than as confusing per-request failures.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from receipt_vault.core.errors import ConfigurationError

# -----------------------------------------------------------------------------
# .env loading
#
# Prefer a .env in the repository root but allow fallback to whatever
# python-dotenv discovers from the current working directory.  As a last
# resort, a .env in the backend directory may be used.  Files are loaded in
# order without overriding already-set variables.

_THIS_FILE = Path(__file__).resolve()
_REPO_ROOT = _THIS_FILE.parents[3]
_ROOT_ENV = _REPO_ROOT / ".env"

_candidate_envs: list[str] = []
if _ROOT_ENV.exists():
    _candidate_envs.append(str(_ROOT_ENV))

_FOUND_ENV = find_dotenv(usecwd=True)
if _FOUND_ENV and _FOUND_ENV not in _candidate_envs:
    _candidate_envs.append(_FOUND_ENV)

_BACKEND_ENV = (_THIS_FILE.parents[2] / ".env").as_posix()
if os.path.exists(_BACKEND_ENV) and _BACKEND_ENV not in _candidate_envs:
    _candidate_envs.append(_BACKEND_ENV)

for _env_path in _candidate_envs:
    load_dotenv(dotenv_path=_env_path, override=False)


class Settings(BaseSettings):
    """Application settings.

    Values are loaded from the environment with sensible defaults.  Any
    attribute defined here can be overridden by setting the corresponding
    environment variable.
    """

    model_config = SettingsConfigDict(
        env_file=tuple(_candidate_envs) if _candidate_envs else (".env",),
        case_sensitive=True,
        extra="ignore",
    )

    # API Settings
    PROJECT_NAME: str = "Receipt Vault"
    ENVIRONMENT: str = Field(default="development")
    # Prefix for absolute links handed to clients (e.g. https://api.example.com).
    # Empty keeps links relative to the API host.
    PUBLIC_BASE_URL: str = Field(default="")

    # Database
    DATABASE_URL: Optional[str] = Field(default=None)
    DB_DEV_FALLBACK_SQLITE: bool = Field(default=False)
    DB_ECHO: bool = Field(default=False)

    # Storage
    STORAGE_BACKEND: str = Field(default="minio")
    STORAGE_DIRECTORY: str = Field(default="./storage")
    MINIO_ENDPOINT: str = Field(default="localhost:9000")
    MINIO_ACCESS_KEY: str = Field(default="minioadmin")
    MINIO_SECRET_KEY: str = Field(default="minioadmin")
    MINIO_BUCKET_NAME: str = Field(default="receipts")
    MINIO_USE_SSL: bool = Field(default=False)
    UPLOAD_URL_TTL_SECONDS: int = Field(default=300)
    UPLOAD_TIMEOUT_SECONDS: float = Field(default=300.0)
    DOWNLOAD_URL_TTL_SECONDS: int = Field(default=3600)

    # File Upload
    MAX_UPLOAD_SIZE: int = 10 * 1024 * 1024  # 10MB
    MAX_BATCH_FILES: int = 10

    # Entitlements (Schematic)
    ENTITLEMENT_BACKEND: str = Field(default="schematic")
    SCHEMATIC_API_KEY: Optional[str] = Field(default=None)
    SCHEMATIC_API_URL: str = Field(default="https://api.schematichq.com")
    SCHEMATIC_TIMEOUT_SECONDS: float = Field(default=10.0)
    ENTITLEMENT_FEATURE_KEY: str = Field(default="scans")
    ACCESS_TOKEN_RESOURCE_TYPE: str = Field(default="company")
    # Used only by the local backend (usage derived from this month's receipts)
    LOCAL_MONTHLY_SCAN_ALLOCATION: int = Field(default=25)

    # Auth
    DEV_AUTH_BYPASS: bool = Field(default=False)
    DEV_ACCOUNT_ID: str = Field(default="user_dev123")
    CLERK_JWKS_URL: Optional[str] = Field(default=None)
    CLERK_JWT_AUDIENCE: Optional[str] = Field(default=None)
    CLERK_JWT_ISSUER: Optional[str] = Field(default=None)
    # Shared secret for the extraction actor calling /internal routes
    INTERNAL_API_KEY: Optional[str] = Field(default=None)
    # Signs filesystem upload/download links
    SECRET_KEY: str = Field(default="changeme")

    # CORS
    BACKEND_CORS_ORIGINS: list[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
    )

    # Sentry
    SENTRY_DSN: Optional[str] = Field(default=None)
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.0)
    SENTRY_RELEASE: Optional[str] = Field(default=None)


# Instantiate global settings
settings = Settings()


def validate_settings(cfg: Settings) -> None:
    """Fail fast on misconfiguration.

    Raises:
        ConfigurationError: listing every problem found.
    """
    problems: list[str] = []

    entitlement_backend = (cfg.ENTITLEMENT_BACKEND or "").lower()
    if entitlement_backend not in {"schematic", "local"}:
        problems.append(f"ENTITLEMENT_BACKEND must be 'schematic' or 'local', got {cfg.ENTITLEMENT_BACKEND!r}")
    elif entitlement_backend == "schematic" and not cfg.SCHEMATIC_API_KEY:
        problems.append("SCHEMATIC_API_KEY is required when ENTITLEMENT_BACKEND=schematic")

    storage_backend = (cfg.STORAGE_BACKEND or "").lower()
    if storage_backend not in {"minio", "filesystem"}:
        problems.append(f"STORAGE_BACKEND must be 'minio' or 'filesystem', got {cfg.STORAGE_BACKEND!r}")
    elif storage_backend == "minio" and not (cfg.MINIO_ENDPOINT and cfg.MINIO_BUCKET_NAME):
        problems.append("MINIO_ENDPOINT and MINIO_BUCKET_NAME are required when STORAGE_BACKEND=minio")

    if not cfg.DATABASE_URL and not cfg.DB_DEV_FALLBACK_SQLITE:
        problems.append(
            "No database URL provided via DATABASE_URL; with "
            "DB_DEV_FALLBACK_SQLITE=false, a database URL is required."
        )

    if min(cfg.UPLOAD_URL_TTL_SECONDS, cfg.UPLOAD_TIMEOUT_SECONDS, cfg.DOWNLOAD_URL_TTL_SECONDS) <= 0:
        problems.append(
            "UPLOAD_URL_TTL_SECONDS, UPLOAD_TIMEOUT_SECONDS and DOWNLOAD_URL_TTL_SECONDS must be positive"
        )

    if problems:
        raise ConfigurationError("; ".join(problems))
