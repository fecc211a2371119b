"""Health check endpoint."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vault.api.deps import get_session
from vault.services.artifact_service import count_backlog

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    pending_restore: int | None = None
    blocked: int | None = None


@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> HealthResponse:
    """Report database reachability and the restore backlog.

    ``blocked`` counts received artifacts held back by a recorded failure; any
    non-zero value marks the vault degraded until an operator clears it.
    """
    try:
        pending, blocked = await count_backlog(session)
    except SQLAlchemyError:
        logger.warning("Health check database query failed", exc_info=True)
        return HealthResponse(status="degraded", version="0.1.0", database="error")

    return HealthResponse(
        status="degraded" if blocked else "ok",
        version="0.1.0",
        database="ok",
        pending_restore=pending,
        blocked=blocked,
    )
