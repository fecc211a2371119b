"""Oplog replay: apply captured lines to a target MongoDB deployment."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, assert_never

from pymongo.errors import ConnectionFailure, DuplicateKeyError, PyMongoError

from vault.exceptions import BackupError
from vault.services.oplog_service import (
    OpKind,
    OplogEntry,
    decode_line,
    diff_to_update,
    split_namespace,
)

if TYPE_CHECKING:
    from pathlib import Path

    from pymongo import MongoClient

logger = logging.getLogger(__name__)

_LOG_LINE_LIMIT = 500


class LineOutcome(StrEnum):
    """Result of replaying one oplog line."""

    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ReplayTally:
    """Per-file replay counts. Diagnostic only; it does not gate completion."""

    applied: int = 0
    failed: int = 0
    skipped: int = 0

    def record(self, outcome: LineOutcome) -> None:
        if outcome is LineOutcome.APPLIED:
            self.applied += 1
        elif outcome is LineOutcome.FAILED:
            self.failed += 1
        else:
            self.skipped += 1


class OplogApplier:
    """Applies oplog entries to the databases of a MongoDB client.

    Inserts fall back to an upserting replace on duplicate ``_id`` so a
    re-delivered insert is idempotent.  Connection failures are not per-line
    failures: they propagate so the whole file is retried later.
    """

    def __init__(self, client: MongoClient[dict[str, Any]]) -> None:
        self.client = client

    def apply_entry(self, entry: OplogEntry) -> LineOutcome:
        """Apply one entry. Raises on failure."""
        namespace = split_namespace(entry.ns)
        if namespace is None:
            logger.debug("Skipping entry with namespace %r", entry.ns)
            return LineOutcome.SKIPPED
        db_name, coll_name = namespace
        coll = self.client[db_name][coll_name]

        op = entry.op
        if op is OpKind.INSERT:
            try:
                coll.insert_one(entry.o)
            except DuplicateKeyError:
                coll.replace_one({"_id": entry.o["_id"]}, entry.o, upsert=True)
        elif op is OpKind.UPDATE:
            if entry.o2 is None:
                raise ValueError("Update entry has no o2 filter")
            coll.update_one(entry.o2, diff_to_update(entry.o))
        elif op is OpKind.DELETE:
            coll.delete_one(entry.o)
        elif op is OpKind.NOOP:
            return LineOutcome.SKIPPED
        else:
            assert_never(op)
        return LineOutcome.APPLIED

    def apply_line(self, line: str | bytes, line_number: int = 0) -> LineOutcome:
        """Apply one JSONL line, containing every failure except lost connections.

        Raw bytes are decoded here so an undecodable line fails on its own.
        """
        try:
            if isinstance(line, bytes):
                line = line.decode("utf-8")
            entry = decode_line(line)
            return self.apply_entry(entry)
        except ConnectionFailure:
            raise
        except (BackupError, PyMongoError, ValueError, KeyError, TypeError) as exc:
            logger.error(
                "Error restoring line %d: %s | %s",
                line_number,
                exc,
                line[:_LOG_LINE_LIMIT],
            )
            return LineOutcome.FAILED

    def replay_file(self, path: Path) -> ReplayTally:
        """Replay every non-blank line of a captured artifact in order."""
        tally = ReplayTally()
        with open(path, "rb") as f:
            for line_number, raw in enumerate(f, start=1):
                line = raw.strip()
                if not line:
                    continue
                tally.record(self.apply_line(line, line_number))
        logger.info(
            "Replayed %s: %d applied, %d failed, %d skipped",
            path.name,
            tally.applied,
            tally.failed,
            tally.skipped,
        )
        return tally
