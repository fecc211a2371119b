"""Backup artifact records: upload registration and restore progress."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import TYPE_CHECKING

from sqlalchemy import func, select

from vault.exceptions import (
    ArtifactAlreadyReceived,
    ArtifactNotFound,
    ChecksumMismatch,
    UnknownArtifact,
)
from vault.models.artifact import BackupArtifact
from vault.services.checksum_service import calculate_checksum
from vault.services.datetime_service import now_iso
from vault.services.naming_service import parse_artifact_name

if TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


async def get_artifact(session: AsyncSession, filename: str) -> BackupArtifact | None:
    """Look up an artifact record by filename."""
    stmt = select(BackupArtifact).where(BackupArtifact.filename == filename)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def register_upload(
    session: AsyncSession,
    *,
    filename: str,
    staged_path: Path,
    final_path: Path,
    checksum: str,
    algorithm: str,
    threshold_bytes: int,
) -> BackupArtifact:
    """Verify a whole-file upload and commit it against its pre-registered record.

    ``staged_path`` holds the received bytes.  On success it is renamed to
    ``final_path``; on any failure it is deleted.
    """
    try:
        parsed = parse_artifact_name(filename)
        if parsed is None or not parsed.archived:
            raise UnknownArtifact(f"File name {filename} is not in expected style")

        artifact = await get_artifact(session, filename)
        if artifact is None:
            raise UnknownArtifact(f"File {filename} not found in db")
        if artifact.password_retrieved_time is not None:
            raise ArtifactAlreadyReceived(f"Artifact {filename} is already being restored")

        calculated = await asyncio.to_thread(
            calculate_checksum, staged_path, algorithm, threshold_bytes
        )
        if calculated != checksum:
            artifact.wrong_checksum = calculated
            artifact.updated_at = now_iso()
            await session.commit()
            logger.error(
                "Checksum mismatch for %s: declared %s, received %s (%d bytes)",
                filename,
                checksum,
                calculated,
                staged_path.stat().st_size,
            )
            raise ChecksumMismatch(checksum, calculated, subject=filename)
    except BaseException:
        staged_path.unlink(missing_ok=True)
        raise

    size = staged_path.stat().st_size
    await asyncio.to_thread(os.replace, staged_path, final_path)

    now = now_iso()
    artifact.size = size
    artifact.checksum = calculated
    artifact.checksum_algorithm = algorithm
    artifact.wrong_checksum = None
    artifact.date_time = parsed.stamp
    artifact.t = parsed.t
    artifact.i = parsed.i
    artifact.received_time = now
    artifact.updated_at = now
    await session.commit()
    logger.info("Checksum OK for %s (%d bytes)", filename, size)
    return artifact


async def next_pending_artifact(session: AsyncSession) -> BackupArtifact | None:
    """Return the oldest received artifact that has not reached a terminal state."""
    stmt = (
        select(BackupArtifact)
        .where(BackupArtifact.restored.is_(None))
        .where(BackupArtifact.received_time.is_not(None))
        .order_by(BackupArtifact.created_at, BackupArtifact.id)
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def mark_decompressed(session: AsyncSession, artifact: BackupArtifact) -> None:
    now = now_iso()
    artifact.decompressed_time = now
    artifact.updated_at = now
    await session.commit()


async def mark_restored(session: AsyncSession, artifact: BackupArtifact) -> None:
    """Set the terminal restored flag. Only valid after decompression."""
    if artifact.decompressed_time is None:
        msg = f"Artifact {artifact.filename} cannot be restored before it is decompressed"
        raise ValueError(msg)
    if artifact.restored:
        return
    artifact.restored = True
    artifact.updated_at = now_iso()
    await session.commit()


async def mark_discarded(session: AsyncSession, artifact: BackupArtifact, reason: str) -> None:
    artifact.restored = False
    artifact.failure_reason = reason
    artifact.updated_at = now_iso()
    await session.commit()


async def mark_failed(session: AsyncSession, artifact: BackupArtifact, reason: str) -> None:
    """Flag an artifact as needing operator attention."""
    artifact.failure_reason = reason
    artifact.updated_at = now_iso()
    await session.commit()


async def clear_failure(session: AsyncSession, filename: str) -> BackupArtifact:
    """Clear an operator-attention flag so the replay engine picks the artifact up again."""
    artifact = await get_artifact(session, filename)
    if artifact is None:
        raise ArtifactNotFound(f"Artifact {filename} not found")
    artifact.failure_reason = None
    artifact.updated_at = now_iso()
    await session.commit()
    return artifact


async def count_backlog(session: AsyncSession) -> tuple[int, int]:
    """Count received artifacts awaiting restore, and those blocked on an operator."""
    stmt = select(
        func.count(BackupArtifact.id),
        func.count(BackupArtifact.failure_reason),
    ).where(BackupArtifact.restored.is_(None), BackupArtifact.received_time.is_not(None))
    pending, blocked = (await session.execute(stmt)).one()
    return int(pending), int(blocked)
