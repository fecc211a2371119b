"""One-time artifact passwords: issued at registration, disclosed for restore."""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING

from sqlalchemy import select

from vault.exceptions import ArtifactAlreadyReceived, ArtifactNotFound
from vault.models.artifact import BackupArtifact
from vault.services.crypto_service import decrypt_value, encrypt_value
from vault.services.datetime_service import now_iso

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

_SECRET_BYTES = 32


def new_secret() -> str:
    """Return a random URL-safe secret with 256 bits of entropy."""
    return secrets.token_urlsafe(_SECRET_BYTES)


async def generate_password(
    session: AsyncSession,
    filename: str,
    file_type: str | None,
    public_key: RSAPublicKey,
) -> str:
    """Register an artifact and return its freshly generated password.

    Only the encrypted form is stored.  A second request for an artifact that
    has not been uploaded yet (client retry) replaces the secret; once the
    upload arrived the record is frozen and ArtifactAlreadyReceived is raised.
    """
    secret = new_secret()
    sealed = encrypt_value(secret, public_key)
    now = now_iso()

    stmt = select(BackupArtifact).where(BackupArtifact.filename == filename)
    result = await session.execute(stmt)
    artifact = result.scalar_one_or_none()
    if artifact is None:
        session.add(
            BackupArtifact(
                filename=filename,
                file_type=file_type,
                password=sealed,
                created_at=now,
                updated_at=now,
            )
        )
        logger.info("Registered artifact %s (type=%s)", filename, file_type)
    elif artifact.received_time is not None:
        raise ArtifactAlreadyReceived(f"Artifact {filename} has already been received")
    else:
        artifact.password = sealed
        artifact.file_type = file_type
        artifact.updated_at = now
        logger.warning("Re-issued password for artifact %s before upload", filename)

    await session.commit()
    return secret


async def retrieve_password(
    session: AsyncSession,
    filename: str,
    file_type: str | None,
    private_key: RSAPrivateKey,
) -> str:
    """Decrypt and return an artifact's password, stamping the first retrieval.

    Raises ArtifactNotFound if no record matches.  Repeated retrievals still
    succeed and are logged as re-deliveries.
    """
    stmt = select(BackupArtifact).where(BackupArtifact.filename == filename)
    if file_type is not None:
        stmt = stmt.where(BackupArtifact.file_type == file_type)
    result = await session.execute(stmt)
    artifact = result.scalar_one_or_none()
    if artifact is None:
        raise ArtifactNotFound(f"Artifact {filename} not found")

    password = decrypt_value(artifact.password, private_key)
    if artifact.password_retrieved_time is None:
        now = now_iso()
        artifact.password_retrieved_time = now
        artifact.updated_at = now
        await session.commit()
    else:
        logger.warning(
            "Password for %s re-delivered (first retrieved at %s)",
            filename,
            artifact.password_retrieved_time,
        )
    return password
