"""Durable record of the last captured oplog position."""

from __future__ import annotations

import json
import logging
import os
from typing import TYPE_CHECKING

from vault.exceptions import CheckpointError
from vault.services.oplog_service import OplogPosition

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


class CheckpointStore:
    """Reads and atomically replaces a ``{"t": ..., "i": ...}`` JSON file.

    A missing or empty file is the first-run state and reads as None.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> OplogPosition | None:
        if not self.path.exists():
            return None
        try:
            raw = self.path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise CheckpointError(f"Cannot read checkpoint {self.path}: {exc}") from exc
        if not raw:
            return None
        try:
            data = json.loads(raw)
            position = OplogPosition(t=int(data["t"]), i=int(data["i"]))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            raise CheckpointError(f"Corrupt checkpoint {self.path}: {exc}") from exc
        logger.debug("Loaded checkpoint t=%d i=%d", position.t, position.i)
        return position

    def save(self, position: OplogPosition) -> None:
        """Replace the checkpoint; readers see either the old or the new value."""
        tmp = self.path.with_name(f".{self.path.name}.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(position.as_dict(), f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            raise CheckpointError(f"Cannot write checkpoint {self.path}: {exc}") from exc
        logger.info("Checkpoint advanced to t=%d i=%d", position.t, position.i)
