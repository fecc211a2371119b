"""Replay engine: turns received artifacts back into writes on the target database.

Each artifact moves through ``pending -> password retrieved -> decompressed ->
restored``.  One artifact is processed per iteration, oldest first, so replay
order matches capture order.  An artifact flagged with ``failure_reason``
blocks the queue until an operator clears it (``vault-replay --clear-failure``).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import shutil
import sys
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from pymongo import MongoClient
from pymongo.errors import PyMongoError

from vault.config import Settings
from vault.database import create_engine, create_schema
from vault.exceptions import (
    ArtifactNotFound,
    ExtractionFailed,
    InternalServerError,
    WrongPassword,
)
from vault.logging_config import configure_logging
from vault.services.archive_service import ARCHIVE_SUFFIX, SevenZip
from vault.services.artifact_service import (
    clear_failure,
    mark_decompressed,
    mark_discarded,
    mark_failed,
    mark_restored,
    next_pending_artifact,
)
from vault.services.crypto_service import load_or_create_keypair
from vault.services.password_service import retrieve_password
from vault.services.replay_service import OplogApplier, ReplayTally

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from vault.models.artifact import BackupArtifact
    from vault.services.crypto_service import KeyPair

logger = logging.getLogger(__name__)


class ReplayStatus(StrEnum):
    """Outcome of one replay iteration."""

    IDLE = "idle"
    RESTORED = "restored"
    DISCARDED = "discarded"
    FAILED = "failed"
    BLOCKED = "blocked"


@dataclass
class ReplayResult:
    status: ReplayStatus
    filename: str | None = None
    tally: ReplayTally | None = None
    reason: str | None = None


class ReplayEngine:
    """Processes received artifacts one at a time."""

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        keypair: KeyPair,
        applier: OplogApplier,
        archiver: SevenZip,
    ) -> None:
        self.settings = settings
        self.session_factory = session_factory
        self.keypair = keypair
        self.applier = applier
        self.archiver = archiver

    async def run_once(self) -> ReplayResult:
        """Advance the oldest pending artifact as far as it will go."""
        async with self.session_factory() as session:
            artifact = await next_pending_artifact(session)
            if artifact is None:
                logger.debug("No artifact waiting for restore")
                return ReplayResult(ReplayStatus.IDLE)

            filename = artifact.filename
            if artifact.failure_reason is not None:
                logger.warning(
                    "Restore blocked on %s: %s (clear with --clear-failure)",
                    filename,
                    artifact.failure_reason,
                )
                return ReplayResult(ReplayStatus.BLOCKED, filename, reason=artifact.failure_reason)

            if not filename.endswith(ARCHIVE_SUFFIX):
                reason = f"File {filename} is not a {ARCHIVE_SUFFIX} archive"
                await mark_discarded(session, artifact, reason)
                logger.warning("Discarded %s: %s", filename, reason)
                return ReplayResult(ReplayStatus.DISCARDED, filename, reason=reason)

            try:
                return await self._restore(session, artifact)
            except (WrongPassword, InternalServerError, ValueError) as exc:
                reason = f"{type(exc).__name__}: {exc}"
                await mark_failed(session, artifact, reason)
                logger.error("Restore of %s needs operator attention: %s", filename, reason)
                return ReplayResult(ReplayStatus.FAILED, filename, reason=reason)
            except (ExtractionFailed, PyMongoError, OSError) as exc:
                logger.error("Restore of %s failed, will retry: %s", filename, exc)
                return ReplayResult(ReplayStatus.FAILED, filename, reason=str(exc))

    async def _restore(self, session: AsyncSession, artifact: BackupArtifact) -> ReplayResult:
        filename = artifact.filename
        archive = self.settings.compressed_dir / filename
        extracted = self.settings.incremental_dir / filename.removesuffix(ARCHIVE_SUFFIX)

        if artifact.decompressed_time is None:
            password = await retrieve_password(
                session, filename, None, self.keypair.private_key
            )
            extracted = await asyncio.to_thread(
                self.archiver.uncompress, archive, password, self.settings.incremental_dir
            )
            await mark_decompressed(session, artifact)
            archive.unlink(missing_ok=True)
        elif not extracted.is_file():
            reason = f"Extracted file {extracted.name} is missing"
            await mark_failed(session, artifact, reason)
            logger.error("Cannot resume restore of %s: %s", filename, reason)
            return ReplayResult(ReplayStatus.FAILED, filename, reason=reason)
        else:
            logger.info("Resuming restore of %s from decompressed file", filename)

        tally = await asyncio.to_thread(self.applier.replay_file, extracted)
        if tally.failed:
            logger.warning("%s restored with %d failed line(s)", filename, tally.failed)
        await mark_restored(session, artifact)

        self.settings.restored_dir.mkdir(parents=True, exist_ok=True)
        shutil.move(extracted, self.settings.restored_dir / extracted.name)
        logger.info("Restored %s", filename)
        return ReplayResult(ReplayStatus.RESTORED, filename, tally=tally)

    async def run(
        self,
        max_iterations: int | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> list[ReplayResult]:
        """Loop over ``run_once``; sleep when idle or blocked, back off after failures."""
        results: list[ReplayResult] = []
        iteration = 0
        while max_iterations is None or iteration < max_iterations:
            iteration += 1
            result = await self.run_once()
            if max_iterations is not None:
                results.append(result)
            if result.status in {ReplayStatus.RESTORED, ReplayStatus.DISCARDED}:
                continue
            if max_iterations is not None and iteration >= max_iterations:
                break
            if result.status is ReplayStatus.FAILED:
                await sleep(self.settings.replay_error_backoff_seconds)
            else:
                await sleep(self.settings.replay_poll_interval_seconds)
        return results


async def _clear_failure(settings: Settings, filename: str) -> int:
    engine, session_factory = create_engine(settings)
    try:
        await create_schema(engine)
        async with session_factory() as session:
            try:
                await clear_failure(session, filename)
            except ArtifactNotFound as exc:
                print(f"Error: {exc}")
                return 1
        print(f"Cleared failure flag on {filename}")
        return 0
    finally:
        await engine.dispose()


async def _run_engine(settings: Settings, once: bool) -> int:
    engine, session_factory = create_engine(settings)
    client: MongoClient[dict[str, object]] = MongoClient(settings.replay_mongo_uri)
    try:
        await create_schema(engine)
        keypair = load_or_create_keypair(settings.keys_dir)
        replay_engine = ReplayEngine(
            settings=settings,
            session_factory=session_factory,
            keypair=keypair,
            applier=OplogApplier(client),
            archiver=SevenZip(settings.sevenzip_binary, settings.archive_timeout_seconds),
        )
        max_iterations = 1 if once else settings.replay_max_iterations
        results = await replay_engine.run(max_iterations=max_iterations)
    finally:
        client.close()
        await engine.dispose()
    return 1 if any(r.status is ReplayStatus.FAILED for r in results) else 0


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the replay engine."""
    parser = argparse.ArgumentParser(
        prog="vault-replay",
        description="Replay received oplog artifacts into the target MongoDB",
    )
    parser.add_argument("--once", action="store_true", help="Process one artifact and exit")
    parser.add_argument(
        "--clear-failure",
        metavar="FILENAME",
        help="Clear the failure flag on an artifact so it is retried",
    )
    args = parser.parse_args(argv)

    settings = Settings()
    configure_logging(settings.debug, settings.log_file)
    settings.ensure_directories()

    if args.clear_failure:
        sys.exit(asyncio.run(_clear_failure(settings, args.clear_failure)))

    if not settings.restore_enabled:
        logger.info("Restore is disabled; set RESTORE_ENABLED=true to enable replay")
        return

    logger.info("Starting replay engine (once=%s)", args.once)
    sys.exit(asyncio.run(_run_engine(settings, args.once)))


if __name__ == "__main__":
    main()
