"""Transfer request/response schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class UploadResponse(BaseModel):
    """Response after a whole-file upload was verified and committed."""

    filename: str
    size: int
    checksum: str
    algorithm: str


class ChunkUploadResponse(BaseModel):
    """Response after one chunk was verified and staged."""

    file_name: str
    chunk_index: int
    total_chunks: int


class AssembleRequest(BaseModel):
    """Request to concatenate staged chunks into the final file."""

    file_name: str = Field(min_length=1, max_length=255)
    total_chunks: int = Field(ge=1)


class AssembleResponse(BaseModel):
    """Checksum of the assembled file, for comparison with the sender's."""

    file_name: str
    checksum: str
    algorithm: str
    size: int
