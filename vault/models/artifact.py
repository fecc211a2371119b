"""Backup artifact model."""

from __future__ import annotations

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from vault.models.base import Base


class BackupArtifact(Base):
    """One uploaded backup unit and its restore progress.

    Created by password generation; upload fills in the integrity fields and
    ``received_time``; the replay engine stamps ``password_retrieved_time``,
    ``decompressed_time`` and finally ``restored``.

    ``restored`` is tri-state: ``None`` while pending, ``True`` once replayed,
    ``False`` when the artifact was discarded as not replayable.
    """

    __tablename__ = "backup_artifacts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    filename: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    file_type: Mapped[str | None] = mapped_column(String, nullable=True)
    password: Mapped[str] = mapped_column(Text, nullable=False)

    size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    checksum: Mapped[str | None] = mapped_column(String, nullable=True)
    checksum_algorithm: Mapped[str | None] = mapped_column(String, nullable=True)
    wrong_checksum: Mapped[str | None] = mapped_column(String, nullable=True)

    date_time: Mapped[str | None] = mapped_column(String, nullable=True)
    t: Mapped[int | None] = mapped_column(Integer, nullable=True)
    i: Mapped[int | None] = mapped_column(Integer, nullable=True)

    received_time: Mapped[str | None] = mapped_column(Text, nullable=True)
    password_retrieved_time: Mapped[str | None] = mapped_column(Text, nullable=True)
    decompressed_time: Mapped[str | None] = mapped_column(Text, nullable=True)
    restored: Mapped[bool | None] = mapped_column(Boolean, nullable=True, default=None)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)
