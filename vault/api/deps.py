"""Shared API dependencies: settings, DB session, keypair, chunk store."""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from vault.config import Settings
from vault.services.chunk_service import ChunkStore
from vault.services.crypto_service import KeyPair


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Get a database session."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


def get_keypair(request: Request) -> KeyPair:
    """Get the password keypair loaded at startup."""
    keypair: KeyPair = request.app.state.keypair
    return keypair


def get_chunk_store(request: Request) -> ChunkStore:
    """Get the chunk staging store from app state."""
    store: ChunkStore = request.app.state.chunk_store
    return store
