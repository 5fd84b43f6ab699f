from __future__ import annotations

import pytest
import pytest_asyncio

from receipt_vault.core.database import build_engine, build_sessionmaker, init_db
from receipt_vault.services.storage_service import FilesystemBlobStore


@pytest.fixture
def blob_store(tmp_path) -> FilesystemBlobStore:
    return FilesystemBlobStore(tmp_path / "blobs", secret_key="test-secret")


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_sessionmaker(engine)
