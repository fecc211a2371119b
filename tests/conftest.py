"""Shared test fixtures for the backup vault and shipper."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from shipper.config import ShipperSettings
from vault.config import Settings
from vault.database import create_schema
from vault.main import create_app
from vault.services.chunk_service import ChunkStore
from vault.services.crypto_service import KeyPair, generate_keypair, serialize_keypair

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

TEST_API_KEY = "test-api-key-with-at-least-32-characters"


@asynccontextmanager
async def create_test_client(settings: Settings) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with a fully initialized app.

    Manually performs the work of the application lifespan (directories, DB,
    keypair, chunk store) because ASGITransport does not trigger it.
    """
    from vault.database import create_engine as create_db_engine
    from vault.services.crypto_service import load_or_create_keypair

    app = create_app(settings)
    settings.validate_runtime_security()
    settings.ensure_directories()

    engine, session_factory = create_db_engine(settings)
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.settings = settings
    await create_schema(engine)

    app.state.keypair = load_or_create_keypair(settings.keys_dir)
    app.state.chunk_store = ChunkStore(settings.full_dir)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"apikey": settings.api_key},
    ) as ac:
        yield ac

    await engine.dispose()


@pytest.fixture(scope="session")
def keypair() -> KeyPair:
    """One RSA keypair for the whole run; generation is slow."""
    return generate_keypair()


@pytest.fixture
def test_settings(tmp_path: Path, keypair: KeyPair) -> Settings:
    """Create test settings with temporary paths."""
    db_path = tmp_path / "test.db"
    keys_dir = tmp_path / "keys"
    serialize_keypair(keypair, keys_dir)
    return Settings(
        api_key=TEST_API_KEY,
        debug=True,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        compressed_dir=tmp_path / "vault" / "compressed",
        incremental_dir=tmp_path / "vault" / "incremental",
        restored_dir=tmp_path / "vault" / "restored",
        full_dir=tmp_path / "vault" / "full",
        keys_dir=keys_dir,
        restore_enabled=True,
    )


@pytest.fixture
def shipper_settings(tmp_path: Path) -> ShipperSettings:
    root = tmp_path / "shipper"
    return ShipperSettings(
        server_url="http://localhost:54322",
        api_key=TEST_API_KEY,
        checkpoint_file=root / "last_ts.json",
        temp_dir=root / "temp",
        incremental_dir=root / "incremental",
        compressed_dir=root / "compressed",
        synced_dir=root / "synced",
        full_dir=root / "full",
        initial_position="oplog_start",
    )


@pytest.fixture
async def client(test_settings: Settings) -> AsyncGenerator[AsyncClient]:
    async with create_test_client(test_settings) as ac:
        yield ac


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with the schema in place."""
    engine = create_async_engine(
        test_settings.database_url,
        echo=False,
    )
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session
