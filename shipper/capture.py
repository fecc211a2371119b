"""Oplog capture: tail the source oplog past the checkpoint into an artifact file.

One pass writes every new entry to a temp file, renames it to its final
incremental name, and only then advances the checkpoint.  A crash at any point
leaves the checkpoint at the previous artifact, so the next pass re-captures
the same window.
"""

from __future__ import annotations

import logging
import os
import re
import time
from collections import Counter
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pymongo.errors import PyMongoError

from vault.exceptions import CheckpointError, NoNewEntries, SourceUnavailable
from vault.services.datetime_service import format_capture_stamp
from vault.services.naming_service import build_artifact_name
from vault.services.oplog_service import (
    SYSTEM_NAMESPACE_PATTERN,
    OpKind,
    OplogPosition,
    encode_document,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from pymongo.collection import Collection

    from shipper.checkpoint import CheckpointStore
    from shipper.config import ShipperSettings

logger = logging.getLogger(__name__)

TEMP_FILE_NAME = "incremental-backup.jsonl.tmp"


class CaptureStatus(StrEnum):
    """Outcome of one capture pass."""

    CAPTURED = "captured"
    IDLE = "idle"
    FAILED = "failed"


@dataclass(frozen=True)
class CaptureCounts:
    inserts: int = 0
    updates: int = 0
    deletes: int = 0


@dataclass(frozen=True)
class CaptureResult:
    artifact_path: Path
    counts: CaptureCounts
    final_position: OplogPosition


def latest_oplog_position(oplog: Collection[dict[str, Any]]) -> OplogPosition | None:
    """Return the position of the newest oplog entry, or None for an empty oplog."""
    doc = oplog.find_one({}, sort=[("$natural", -1)], projection={"ts": 1})
    if doc is None:
        return None
    return OplogPosition.from_timestamp(doc["ts"])


def build_capture_query(after: OplogPosition | None) -> dict[str, Any]:
    """Filter out administrative namespaces, no-ops and everything up to ``after``."""
    query: dict[str, Any] = {
        "ns": {"$not": re.compile(SYSTEM_NAMESPACE_PATTERN)},
        "op": {"$ne": OpKind.NOOP.value},
    }
    if after is not None:
        query["ts"] = {"$gt": after.to_timestamp()}
    return query


class OplogCapturer:
    """Captures new oplog entries into incremental artifact files."""

    def __init__(
        self,
        settings: ShipperSettings,
        oplog: Collection[dict[str, Any]],
        checkpoint_store: CheckpointStore,
    ) -> None:
        self.settings = settings
        self.oplog = oplog
        self.checkpoint_store = checkpoint_store
        self._checkpoint_loaded = False
        self._checkpoint: OplogPosition | None = None
        self._seeded = False
        self._seed: OplogPosition | None = None

    def lower_bound(self) -> OplogPosition | None:
        """Position after which to capture.

        The checkpoint file is read on the first successful call only; after
        that the position this process last saved is used.  The checkpoint
        wins.  Without one, ``initial_position="latest"`` starts at the newest
        entry seen by this process (kept in memory only), and ``"oplog_start"``
        captures the whole oplog.
        """
        if not self._checkpoint_loaded:
            self._checkpoint = self.checkpoint_store.load()
            self._checkpoint_loaded = True
        if self._checkpoint is not None:
            return self._checkpoint
        if self.settings.initial_position == "oplog_start":
            return None
        if not self._seeded:
            try:
                self._seed = latest_oplog_position(self.oplog)
            except PyMongoError as exc:
                raise SourceUnavailable(f"Cannot read oplog tail: {exc}") from exc
            self._seeded = True
            if self._seed is not None:
                logger.info(
                    "No checkpoint; starting after oplog tail t=%d i=%d",
                    self._seed.t,
                    self._seed.i,
                )
        return self._seed

    def capture_once(self) -> CaptureResult:
        """Capture every entry past the lower bound into a new artifact.

        Raises NoNewEntries when there is nothing to capture and
        SourceUnavailable when the oplog cannot be read.
        """
        after = self.lower_bound()
        self.settings.temp_dir.mkdir(parents=True, exist_ok=True)
        temp = self.settings.temp_dir / TEMP_FILE_NAME
        temp.unlink(missing_ok=True)

        counts: Counter[str] = Counter()
        last_doc: dict[str, Any] | None = None
        try:
            with (
                self.oplog.find(build_capture_query(after), sort=[("$natural", 1)]) as cursor,
                open(temp, "w", encoding="utf-8") as out,
            ):
                for doc in cursor:
                    out.write(encode_document(doc))
                    out.write("\n")
                    counts[doc.get("op", "")] += 1
                    last_doc = doc
                out.flush()
                os.fsync(out.fileno())
        except PyMongoError as exc:
            raise SourceUnavailable(f"Cannot read oplog: {exc}") from exc

        if last_doc is None:
            temp.unlink(missing_ok=True)
            raise NoNewEntries("No new oplog entries")

        position = OplogPosition.from_timestamp(last_doc["ts"])
        result_counts = CaptureCounts(
            inserts=counts[OpKind.INSERT.value],
            updates=counts[OpKind.UPDATE.value],
            deletes=counts[OpKind.DELETE.value],
        )
        name = build_artifact_name(
            format_capture_stamp(tz=self.settings.capture_timezone),
            position.t,
            position.i,
            result_counts.inserts,
            result_counts.updates,
            result_counts.deletes,
        )
        self.settings.incremental_dir.mkdir(parents=True, exist_ok=True)
        artifact_path = self.settings.incremental_dir / name
        os.replace(temp, artifact_path)
        self.checkpoint_store.save(position)
        self._checkpoint = position

        logger.info(
            "Captured %s (%d inserts, %d updates, %d deletes)",
            name,
            result_counts.inserts,
            result_counts.updates,
            result_counts.deletes,
        )
        return CaptureResult(
            artifact_path=artifact_path, counts=result_counts, final_position=position
        )

    def run(
        self,
        max_iterations: int | None = None,
        sleep: Callable[[float], object] = time.sleep,
    ) -> list[CaptureStatus]:
        """Capture repeatedly, waiting ``capture_interval_seconds`` between passes."""
        statuses: list[CaptureStatus] = []
        iteration = 0
        while max_iterations is None or iteration < max_iterations:
            iteration += 1
            try:
                self.capture_once()
                status = CaptureStatus.CAPTURED
            except NoNewEntries:
                logger.debug("No new oplog entries")
                status = CaptureStatus.IDLE
            except (SourceUnavailable, CheckpointError, OSError) as exc:
                logger.error("Capture failed: %s", exc)
                status = CaptureStatus.FAILED
            if max_iterations is not None:
                statuses.append(status)
                if iteration >= max_iterations:
                    break
            if status is CaptureStatus.FAILED:
                sleep(self.settings.error_backoff_seconds)
            else:
                sleep(self.settings.capture_interval_seconds)
        return statuses
