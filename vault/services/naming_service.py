"""Incremental artifact naming: the capture window encoded in a filename.

Format::

    incremental-backup-<YYYY-MM-DD--HH-MM-SS>-<t>-<i>-i<inserts>-u<updates>-d<deletes>.jsonl

The packaged form appends ``.zip``.  The stamp, ``t`` and ``i`` are parsed by
the vault to correlate an upload with its pre-registered record, so the layout
is a wire format.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from vault.services.datetime_service import parse_capture_stamp

PREFIX = "incremental-backup-"
RAW_SUFFIX = ".jsonl"
ARCHIVE_SUFFIX = ".zip"

_NAME_RE = re.compile(
    r"^incremental-backup-"
    r"(?P<stamp>\d{4}-\d{2}-\d{2}--\d{1,2}-\d{2}-\d{2})-"
    r"(?P<t>\d+)-(?P<i>\d+)-"
    r"i(?P<inserts>\d+)-u(?P<updates>\d+)-d(?P<deletes>\d+)"
    r"\.jsonl(?P<archive>\.zip)?$"
)


@dataclass(frozen=True)
class ArtifactName:
    """Fields encoded in an incremental artifact filename."""

    stamp: str
    t: int
    i: int
    inserts: int
    updates: int
    deletes: int
    archived: bool = False

    @property
    def raw_name(self) -> str:
        return (
            f"{PREFIX}{self.stamp}-{self.t}-{self.i}"
            f"-i{self.inserts}-u{self.updates}-d{self.deletes}{RAW_SUFFIX}"
        )

    @property
    def archive_name(self) -> str:
        return self.raw_name + ARCHIVE_SUFFIX

    @property
    def filename(self) -> str:
        return self.archive_name if self.archived else self.raw_name


def build_artifact_name(
    stamp: str, t: int, i: int, inserts: int, updates: int, deletes: int
) -> str:
    """Return the raw (``.jsonl``) filename for a capture window."""
    return ArtifactName(stamp, t, i, inserts, updates, deletes).raw_name


def parse_artifact_name(filename: str) -> ArtifactName | None:
    """Parse an artifact filename. Returns None when it is not in the expected style."""
    match = _NAME_RE.match(filename)
    if match is None:
        return None
    try:
        parse_capture_stamp(match["stamp"])
    except ValueError:
        return None
    return ArtifactName(
        stamp=match["stamp"],
        t=int(match["t"]),
        i=int(match["i"]),
        inserts=int(match["inserts"]),
        updates=int(match["updates"]),
        deletes=int(match["deletes"]),
        archived=match["archive"] is not None,
    )
