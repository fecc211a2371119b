"""Password exchange request schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class PasswordRequest(BaseModel):
    """Request naming the artifact a password belongs to."""

    filename: str = Field(min_length=1, max_length=255)
