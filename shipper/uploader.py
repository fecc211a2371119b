"""Sync loop: package captured artifacts and ship them to the vault, oldest first."""

from __future__ import annotations

import logging
import shutil
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

import httpx

from vault.exceptions import ArtifactAlreadyReceived, CompressionFailed, NoPendingWork
from vault.services.checksum_service import calculate_checksum
from vault.services.naming_service import ARCHIVE_SUFFIX, parse_artifact_name

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from shipper.config import ShipperSettings
    from shipper.transfer import TransferClient
    from vault.services.archive_service import SevenZip

logger = logging.getLogger(__name__)


class SyncStatus(StrEnum):
    """Outcome of one sync pass."""

    IDLE = "idle"
    SYNCED = "synced"
    FAILED = "failed"


@dataclass
class SyncResult:
    status: SyncStatus
    filename: str | None = None
    reason: str | None = None


class Uploader:
    """Moves artifacts from the outgoing directory to the vault one at a time."""

    def __init__(
        self,
        settings: ShipperSettings,
        client: TransferClient,
        archiver: SevenZip,
    ) -> None:
        self.settings = settings
        self.client = client
        self.archiver = archiver

    def oldest_pending(self) -> Path:
        """The least recently modified raw artifact in the outgoing directory.

        Raises NoPendingWork when there is nothing to ship.
        """
        directory = self.settings.incremental_dir
        if not directory.is_dir():
            raise NoPendingWork(f"Outgoing directory {directory} does not exist")
        candidates = []
        for path in directory.iterdir():
            parsed = parse_artifact_name(path.name)
            if path.is_file() and parsed is not None and not parsed.archived:
                candidates.append(path)
        if not candidates:
            raise NoPendingWork("No artifacts waiting to be shipped")
        return min(candidates, key=lambda p: (p.stat().st_mtime, p.name))

    def _mark_synced(self, source: Path) -> None:
        self.settings.synced_dir.mkdir(parents=True, exist_ok=True)
        shutil.move(source, self.settings.synced_dir / source.name)

    def sync_once(self) -> SyncResult:
        """Ship the oldest pending artifact: password, compress, checksum, upload."""
        try:
            source = self.oldest_pending()
        except NoPendingWork:
            return SyncResult(SyncStatus.IDLE)

        archive_name = source.name + ARCHIVE_SUFFIX
        algorithm = self.settings.hash_algorithm
        try:
            try:
                password = self.client.generate_password(archive_name)
            except ArtifactAlreadyReceived:
                logger.warning("Vault already holds %s; marking it synced", archive_name)
                self._mark_synced(source)
                return SyncResult(SyncStatus.SYNCED, source.name)

            archive = self.archiver.compress(source, password, self.settings.compressed_dir)
            try:
                checksum = calculate_checksum(
                    archive, algorithm, self.settings.checksum_size_threshold_bytes
                )
                self.client.upload_file(archive, checksum, algorithm)
            finally:
                archive.unlink(missing_ok=True)

            self._mark_synced(source)
        except httpx.HTTPStatusError as exc:
            reason = f"HTTP {exc.response.status_code}: {exc.response.text[:200]}"
            logger.error("Sync of %s failed: %s", source.name, reason)
            return SyncResult(SyncStatus.FAILED, source.name, reason)
        except (httpx.HTTPError, CompressionFailed, OSError) as exc:
            logger.error("Sync of %s failed: %s", source.name, exc)
            return SyncResult(SyncStatus.FAILED, source.name, str(exc))

        logger.info("Synced %s", source.name)
        return SyncResult(SyncStatus.SYNCED, source.name)

    def run(
        self,
        max_iterations: int | None = None,
        sleep: Callable[[float], object] = time.sleep,
    ) -> list[SyncResult]:
        """Sync until the directory drains, then poll; back off after failures."""
        results: list[SyncResult] = []
        iteration = 0
        while max_iterations is None or iteration < max_iterations:
            iteration += 1
            result = self.sync_once()
            if max_iterations is not None:
                results.append(result)
                if iteration >= max_iterations:
                    break
            if result.status is SyncStatus.SYNCED:
                continue
            if result.status is SyncStatus.FAILED:
                sleep(self.settings.error_backoff_seconds)
            else:
                sleep(self.settings.sync_poll_interval_seconds)
        return results
