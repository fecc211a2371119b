"""Password exchange endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from vault.api.deps import get_keypair, get_session
from vault.schemas.password import PasswordRequest
from vault.services.crypto_service import KeyPair
from vault.services.password_service import generate_password, retrieve_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/password", tags=["password"])


@router.post("/generate")
async def password_generate(
    body: PasswordRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
    keypair: Annotated[KeyPair, Depends(get_keypair)],
    file_type: Annotated[str | None, Header(alias="type")] = None,
) -> str:
    """Register an artifact and return its one-time password."""
    return await generate_password(session, body.filename, file_type, keypair.public_key)


@router.post("/retrieve")
async def password_retrieve(
    body: PasswordRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
    keypair: Annotated[KeyPair, Depends(get_keypair)],
    file_type: Annotated[str | None, Header(alias="type")] = None,
) -> str:
    """Return the password of a registered artifact."""
    return await retrieve_password(session, body.filename, file_type, keypair.private_key)
