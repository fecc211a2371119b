"""Transfer endpoints: whole-file upload, chunk upload and chunk assembly."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, Form, Header, HTTPException, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from vault.api.deps import get_chunk_store, get_session, get_settings
from vault.config import Settings
from vault.schemas.upload import (
    AssembleRequest,
    AssembleResponse,
    ChunkUploadResponse,
    UploadResponse,
)
from vault.services.artifact_service import register_upload
from vault.services.checksum_service import DEFAULT_ALGORITHM, STREAM_BLOCK_SIZE
from vault.services.chunk_service import ChunkStore

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

router = APIRouter(tags=["upload"])

_MiB = 1024 * 1024


async def _save_upload(upload: UploadFile, dest: Path, max_bytes: int | None = None) -> int:
    """Stream an uploaded part to ``dest``; removes ``dest`` on any failure."""
    size = 0
    try:
        with open(dest, "wb") as out:
            while True:
                block = await upload.read(STREAM_BLOCK_SIZE)
                if not block:
                    break
                size += len(block)
                if max_bytes is not None and size > max_bytes:
                    raise HTTPException(
                        status_code=413,
                        detail=f"Upload too large (max {max_bytes // _MiB} MB)",
                    )
                out.write(block)
    except BaseException:
        dest.unlink(missing_ok=True)
        raise
    return size


@router.post("/upload", response_model=UploadResponse)
async def upload(
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    file: UploadFile,
    checksum: Annotated[str, Form()],
    filename: Annotated[str, Form()],
    algorithm: Annotated[str, Form()] = DEFAULT_ALGORITHM,
) -> UploadResponse:
    """Receive a packaged artifact, verify its checksum and commit it."""
    settings.compressed_dir.mkdir(parents=True, exist_ok=True)
    staged = settings.compressed_dir / f".upload-{uuid.uuid4().hex}.tmp"
    await _save_upload(file, staged)

    artifact = await register_upload(
        session,
        filename=filename,
        staged_path=staged,
        final_path=settings.compressed_dir / filename,
        checksum=checksum,
        algorithm=algorithm,
        threshold_bytes=settings.checksum_size_threshold_bytes,
    )
    return UploadResponse(
        filename=artifact.filename,
        size=artifact.size,
        checksum=artifact.checksum or checksum,
        algorithm=artifact.checksum_algorithm or algorithm,
    )


@router.post("/upload_full", response_model=ChunkUploadResponse)
async def upload_chunk(
    settings: Annotated[Settings, Depends(get_settings)],
    store: Annotated[ChunkStore, Depends(get_chunk_store)],
    file: UploadFile,
    chunk_index: Annotated[int, Form()],
    file_name: Annotated[str, Form()],
    checksum: Annotated[str, Form()],
    total_chunks: Annotated[int, Form()],
    algorithm: Annotated[str, Header()] = DEFAULT_ALGORITHM,
) -> ChunkUploadResponse:
    """Receive one chunk of a large file and stage it under its index."""
    if total_chunks < 1 or not 0 <= chunk_index < total_chunks:
        raise HTTPException(
            status_code=400,
            detail=f"chunk_index {chunk_index} out of range for {total_chunks} chunks",
        )
    received = store.temp_path(file_name, chunk_index)
    await _save_upload(file, received, settings.max_chunk_size_mb * _MiB)
    await asyncio.to_thread(
        store.stage_chunk, file_name, chunk_index, total_chunks, received, checksum, algorithm
    )
    return ChunkUploadResponse(
        file_name=file_name, chunk_index=chunk_index, total_chunks=total_chunks
    )


@router.post("/assemble", response_model=AssembleResponse)
async def assemble(
    body: AssembleRequest,
    store: Annotated[ChunkStore, Depends(get_chunk_store)],
    algorithm: Annotated[str, Header()] = DEFAULT_ALGORITHM,
) -> AssembleResponse:
    """Concatenate all staged chunks of a file and return the whole-file checksum."""
    assembled = await asyncio.to_thread(
        store.assemble, body.file_name, body.total_chunks, algorithm
    )
    return AssembleResponse(
        file_name=body.file_name,
        checksum=assembled.checksum,
        algorithm=assembled.algorithm,
        size=assembled.size,
    )
