from __future__ import annotations

import pytest

from receipt_vault.api.dependencies import build_services
from receipt_vault.core.config import Settings, validate_settings
from receipt_vault.core.database import normalise_database_url
from receipt_vault.core.errors import ConfigurationError
from receipt_vault.services.entitlement_service import LocalEntitlementGate, SchematicEntitlementGate
from receipt_vault.services.storage_service import FilesystemBlobStore


def _settings(tmp_path, **overrides) -> Settings:
    values = dict(
        _env_file=None,
        DATABASE_URL=f"sqlite:///{tmp_path / 'cfg.db'}",
        STORAGE_BACKEND="filesystem",
        STORAGE_DIRECTORY=str(tmp_path / "blobs"),
        ENTITLEMENT_BACKEND="local",
        SCHEMATIC_API_KEY=None,
    )
    values.update(overrides)
    return Settings(**values)


def test_valid_local_configuration_passes(tmp_path):
    validate_settings(_settings(tmp_path))


def test_schematic_backend_requires_api_key(tmp_path):
    with pytest.raises(ConfigurationError) as excinfo:
        validate_settings(_settings(tmp_path, ENTITLEMENT_BACKEND="schematic"))
    assert "SCHEMATIC_API_KEY" in str(excinfo.value)


def test_all_problems_reported_together(tmp_path):
    cfg = _settings(
        tmp_path,
        STORAGE_BACKEND="s3",
        ENTITLEMENT_BACKEND="stripe",
        DATABASE_URL=None,
        DB_DEV_FALLBACK_SQLITE=False,
        UPLOAD_URL_TTL_SECONDS=0,
    )
    with pytest.raises(ConfigurationError) as excinfo:
        validate_settings(cfg)
    message = str(excinfo.value)
    for fragment in ("STORAGE_BACKEND", "ENTITLEMENT_BACKEND", "DATABASE_URL", "UPLOAD_URL_TTL_SECONDS"):
        assert fragment in message


def test_build_services_fails_fast_without_schematic_key(tmp_path):
    with pytest.raises(ConfigurationError):
        build_services(_settings(tmp_path, ENTITLEMENT_BACKEND="schematic"))


def test_build_services_selects_backends(tmp_path):
    services = build_services(_settings(tmp_path))
    assert isinstance(services.blob_store, FilesystemBlobStore)
    assert isinstance(services.entitlement_gate, LocalEntitlementGate)
    assert services.access_token_issuer is None

    services = build_services(_settings(tmp_path, ENTITLEMENT_BACKEND="schematic", SCHEMATIC_API_KEY="sch_key"))
    assert isinstance(services.entitlement_gate, SchematicEntitlementGate)
    assert services.access_token_issuer is not None


def test_normalise_database_url():
    assert normalise_database_url("sqlite:///./x.db", allow_sqlite_fallback=False) == "sqlite+aiosqlite:///./x.db"
    pg = normalise_database_url("postgres://u:p@db.example.com/app", allow_sqlite_fallback=False)
    assert pg.startswith("postgresql+psycopg://u:p@db.example.com/app")
    assert "sslmode=require" in pg
    with pytest.raises(ConfigurationError):
        normalise_database_url(None, allow_sqlite_fallback=False)
