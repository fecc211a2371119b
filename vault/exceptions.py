"""Application-level exception types.

Convention:
- ``InternalServerError`` - for errors whose details must never reach clients
  (key decryption failures, corrupt records, etc.).  The global handler logs
  the full message at ERROR and returns a generic "Internal server error" (500).
- ``BackupError`` subclasses - domain failures of capture, packaging, transfer
  and replay.  Request-level ones (``UnknownArtifact``, ``MissingChunk``,
  ``ChecksumMismatch``, ``ArtifactNotFound``, ``ArtifactAlreadyReceived``) carry
  a short reason that is safe to forward to clients; the handlers in
  ``vault/main.py`` map them to 4xx statuses.
- ``NoNewEntries`` and ``NoPendingWork`` signal an empty queue. Loops treat
  them as the idle condition and back off; they are never logged as errors.
"""

from __future__ import annotations


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients.

    The global exception handler in ``vault/main.py`` catches this, logs
    the full message server-side, and returns HTTP 500 with a generic
    ``"Internal server error"`` detail.
    """


class BackupError(Exception):
    """Base class for backup pipeline failures."""


class SourceUnavailable(BackupError):
    """The source database or its oplog cannot be reached."""


class NoNewEntries(BackupError):
    """The oplog cursor yielded nothing past the checkpoint."""


class NoPendingWork(BackupError):
    """There is no artifact waiting to be processed."""


class CheckpointError(BackupError):
    """The checkpoint file exists but cannot be read or written."""


class ChecksumMismatch(BackupError):
    """Received bytes do not hash to the checksum the sender declared."""

    def __init__(self, expected: str, actual: str, *, subject: str) -> None:
        self.expected = expected
        self.actual = actual
        self.subject = subject
        super().__init__(f"Checksum mismatch for {subject}")


class UnknownArtifact(BackupError):
    """An upload names an artifact that was never registered."""


class ArtifactNotFound(BackupError):
    """No artifact record exists for the requested filename."""


class ArtifactAlreadyReceived(BackupError):
    """A password was requested for an artifact that has already been uploaded."""


class MissingChunk(BackupError):
    """Assembly was requested while a chunk index is not staged."""

    def __init__(self, file_name: str, index: int) -> None:
        self.file_name = file_name
        self.index = index
        super().__init__(f"Chunk {index} of {file_name} is missing")


class CompressionFailed(BackupError):
    """The external archiver failed to create an archive."""


class ExtractionFailed(BackupError):
    """The external archiver failed to extract an archive."""


class WrongPassword(ExtractionFailed):
    """The archive password was rejected. Needs an operator, never retried."""


class UnsupportedUpdateFormat(BackupError):
    """An oplog update entry is not in the ``$v: 2`` diff format."""
