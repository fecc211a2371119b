"""File checksums: one in-memory read for small files, streamed for large ones."""

from __future__ import annotations

import hashlib
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_ALGORITHM = "sha256"
STREAM_BLOCK_SIZE = 1024 * 1024

# OpenSSL-style names used by other tooling, mapped to hashlib names.
_ALIASES = {
    "blake2b512": "blake2b",
    "blake2s256": "blake2s",
    "sha-256": "sha256",
    "sha-512": "sha512",
}


def new_hash(algorithm: str | None) -> Any:
    """Return a fresh hash object. Raises ValueError for unknown or variable-length algorithms."""
    name = (algorithm or DEFAULT_ALGORITHM).strip().lower()
    name = _ALIASES.get(name, name)
    if name.startswith("shake_"):
        raise ValueError(f"Unsupported checksum algorithm: {algorithm}")
    try:
        return hashlib.new(name)
    except ValueError:
        raise ValueError(f"Unsupported checksum algorithm: {algorithm}") from None


def checksum_buffered(path: Path, algorithm: str | None = DEFAULT_ALGORITHM) -> str:
    """Hash a file by reading it into memory once."""
    h = new_hash(algorithm)
    h.update(path.read_bytes())
    return str(h.hexdigest())


def checksum_streamed(
    path: Path,
    algorithm: str | None = DEFAULT_ALGORITHM,
    block_size: int = STREAM_BLOCK_SIZE,
) -> str:
    """Hash a file incrementally in fixed-size blocks."""
    h = new_hash(algorithm)
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(block_size), b""):
            h.update(block)
    return str(h.hexdigest())


def calculate_checksum(
    path: Path,
    algorithm: str | None = DEFAULT_ALGORITHM,
    threshold_bytes: int = 20 * 1024 * 1024,
) -> str:
    """Hash a file, choosing the in-memory or streamed path by size.

    Both paths produce the same digest; the threshold only bounds memory use.
    """
    size = path.stat().st_size
    logger.debug("Checksum %s (%.2f MB)", path, size / (1024 * 1024))
    if size <= threshold_bytes:
        return checksum_buffered(path, algorithm)
    return checksum_streamed(path, algorithm)
