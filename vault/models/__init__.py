"""SQLAlchemy ORM models for the backup vault."""

from vault.models.artifact import BackupArtifact
from vault.models.base import Base

__all__ = [
    "BackupArtifact",
    "Base",
]
