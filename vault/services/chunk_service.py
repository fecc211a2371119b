"""Chunked transfer: per-chunk staging and in-order assembly.

Storage layout::

    <full_dir>/
    ├── <file_name>.chunks/
    │   ├── 000000.part
    │   ├── 000001.part
    │   └── ...
    └── <file_name>            # assembled result

Re-uploading an index overwrites the staged chunk (last write wins).  Assembly
checks that every index is staged before it writes anything, then appends the
chunks in order, deleting each one as soon as it has been appended.
"""

from __future__ import annotations

import logging
import os
import shutil
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from vault.exceptions import ChecksumMismatch, MissingChunk
from vault.services.checksum_service import STREAM_BLOCK_SIZE, checksum_streamed, new_hash

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

logger = logging.getLogger(__name__)

CHUNK_DIR_SUFFIX = ".chunks"
CHUNK_SUFFIX = ".part"
_INDEX_WIDTH = 6


@dataclass(frozen=True)
class Chunk:
    """An ordered fragment of a larger file."""

    index: int
    total_count: int
    data: bytes


@dataclass(frozen=True)
class AssembledFile:
    """Result of a successful assembly."""

    path: Path
    checksum: str
    algorithm: str
    size: int


def validate_file_name(file_name: str) -> str:
    """Reject names that could escape the staging directory."""
    if (
        not file_name
        or file_name in {".", ".."}
        or "/" in file_name
        or "\\" in file_name
        or "\x00" in file_name
        or file_name.startswith(".")
    ):
        raise ValueError(f"Invalid file name: {file_name!r}")
    return file_name


def iter_chunks(path: Path, chunk_size: int) -> Iterator[Chunk]:
    """Split a file into fixed-size chunks; an empty file yields one empty chunk."""
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
    size = path.stat().st_size
    total = max(1, -(-size // chunk_size))
    with open(path, "rb") as f:
        for index in range(total):
            yield Chunk(index=index, total_count=total, data=f.read(chunk_size))


class ChunkStore:
    """Stages uploaded chunks under ``full_dir`` and assembles them."""

    def __init__(self, full_dir: Path) -> None:
        self.full_dir = full_dir

    def chunk_dir(self, file_name: str) -> Path:
        return self.full_dir / f"{validate_file_name(file_name)}{CHUNK_DIR_SUFFIX}"

    def chunk_path(self, file_name: str, index: int) -> Path:
        return self.chunk_dir(file_name) / f"{index:0{_INDEX_WIDTH}d}{CHUNK_SUFFIX}"

    def temp_path(self, file_name: str, index: int) -> Path:
        """A fresh receive path on the same filesystem as the staged chunk."""
        directory = self.chunk_dir(file_name)
        directory.mkdir(parents=True, exist_ok=True)
        return directory / f".{index:0{_INDEX_WIDTH}d}.{uuid.uuid4().hex}.tmp"

    def stage_chunk(
        self,
        file_name: str,
        index: int,
        total_chunks: int,
        received: Path,
        checksum: str,
        algorithm: str,
    ) -> Path:
        """Verify a received chunk and move it into its indexed slot.

        On checksum mismatch the received bytes are deleted and nothing is staged.
        """
        try:
            if total_chunks < 1:
                raise ValueError(f"total_chunks must be >= 1, got {total_chunks}")
            if not 0 <= index < total_chunks:
                raise ValueError(f"chunk_index {index} out of range for {total_chunks} chunks")
            calculated = checksum_streamed(received, algorithm)
            if calculated != checksum:
                logger.error(
                    "Checksum failed for chunk %d of %s (%d bytes)",
                    index,
                    file_name,
                    received.stat().st_size,
                )
                raise ChecksumMismatch(checksum, calculated, subject=f"chunk {index}")
        except BaseException:
            received.unlink(missing_ok=True)
            raise

        target = self.chunk_path(file_name, index)
        os.replace(received, target)
        logger.info("Staged chunk %d/%d of %s", index + 1, total_chunks, file_name)
        return target

    def missing_indices(self, file_name: str, total_chunks: int) -> list[int]:
        return [
            index
            for index in range(total_chunks)
            if not self.chunk_path(file_name, index).is_file()
        ]

    def assemble(self, file_name: str, total_chunks: int, algorithm: str) -> AssembledFile:
        """Concatenate chunks ``0..total_chunks-1`` into ``full_dir/file_name``.

        Raises MissingChunk naming the first gap, before any output is written.
        """
        if total_chunks < 1:
            raise ValueError(f"total_chunks must be >= 1, got {total_chunks}")
        missing = self.missing_indices(file_name, total_chunks)
        if missing:
            logger.error("Cannot assemble %s: chunk %d missing", file_name, missing[0])
            raise MissingChunk(file_name, missing[0])

        h = new_hash(algorithm)
        final_path = self.full_dir / file_name
        partial = self.full_dir / f".{file_name}.assembling"
        size = 0
        try:
            with open(partial, "wb") as out:
                for index in range(total_chunks):
                    chunk = self.chunk_path(file_name, index)
                    with open(chunk, "rb") as f:
                        for block in iter(lambda f=f: f.read(STREAM_BLOCK_SIZE), b""):
                            out.write(block)
                            h.update(block)
                            size += len(block)
                    chunk.unlink()
                out.flush()
                os.fsync(out.fileno())
        except BaseException:
            partial.unlink(missing_ok=True)
            raise

        os.replace(partial, final_path)
        shutil.rmtree(self.chunk_dir(file_name), ignore_errors=True)
        digest = str(h.hexdigest())
        logger.info("Assembled %s from %d chunks, checksum %s", file_name, total_chunks, digest)
        return AssembledFile(path=final_path, checksum=digest, algorithm=algorithm, size=size)
