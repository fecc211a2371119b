"""7-Zip wrapper: AES-256 password-protected zip containers."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from vault.exceptions import CompressionFailed, ExtractionFailed, WrongPassword

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIX = ".zip"
_WRONG_PASSWORD_MARKER = "wrong password"


def _diagnostics(result: subprocess.CompletedProcess[str]) -> str:
    text = (result.stderr or "").strip() or (result.stdout or "").strip()
    return text or f"exit code {result.returncode}"


class SevenZip:
    """Runs the ``7z`` CLI with argument vectors (no shell)."""

    def __init__(self, binary: str = "7z", timeout: float = 3600) -> None:
        self.binary = binary
        self.timeout = timeout

    def _run(self, *args: str, cwd: Path | None = None) -> subprocess.CompletedProcess[str]:
        """Run a 7z command. Never raises on non-zero exit; callers inspect the result."""
        return subprocess.run(
            [self.binary, *args],
            cwd=cwd,
            check=False,
            capture_output=True,
            text=True,
            timeout=self.timeout,
        )

    def compress(self, source: Path, password: str, dest_dir: Path) -> Path:
        """Pack ``source`` into ``dest_dir/<name>.zip`` encrypted with AES-256.

        Raises CompressionFailed with the tool's diagnostic text.
        """
        if not source.is_file():
            raise CompressionFailed(f"Source file {source} does not exist")
        dest_dir.mkdir(parents=True, exist_ok=True)
        archive = (dest_dir / f"{source.name}{ARCHIVE_SUFFIX}").resolve()
        # ``7z a`` adds to an existing archive; start from scratch.
        archive.unlink(missing_ok=True)

        try:
            result = self._run(
                "a",
                "-tzip",
                "-mem=AES256",
                f"-p{password}",
                "-y",
                str(archive),
                source.name,
                cwd=source.parent,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise CompressionFailed(f"Failed to run {self.binary}: {exc}") from exc

        if result.returncode != 0:
            archive.unlink(missing_ok=True)
            diagnostics = _diagnostics(result)
            logger.error("Compression of %s failed: %s", source.name, diagnostics)
            raise CompressionFailed(f"Compression error: {diagnostics}")

        logger.info("Compressed %s into %s", source.name, archive.name)
        return archive

    def uncompress(self, archive: Path, password: str, dest_dir: Path) -> Path:
        """Extract ``archive`` into ``dest_dir`` and return the extracted file path.

        The archive itself is never modified.  Raises WrongPassword when the tool
        rejects the password, ExtractionFailed for every other failure.
        """
        if not archive.is_file():
            raise ExtractionFailed(f"File {archive} does not exist")
        dest_dir.mkdir(parents=True, exist_ok=True)
        expected = dest_dir / archive.name.removesuffix(ARCHIVE_SUFFIX)
        existed_before = expected.exists()

        try:
            result = self._run("x", f"-p{password}", f"-o{dest_dir}", "-y", str(archive))
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise ExtractionFailed(f"Failed to run {self.binary}: {exc}") from exc

        if result.returncode != 0:
            if not existed_before:
                expected.unlink(missing_ok=True)
            combined = f"{result.stdout or ''}\n{result.stderr or ''}".lower()
            if _WRONG_PASSWORD_MARKER in combined:
                logger.error("Wrong password for %s", archive.name)
                raise WrongPassword(f"Incorrect password for {archive.name}")
            diagnostics = _diagnostics(result)
            logger.error("Extraction of %s failed: %s", archive.name, diagnostics)
            raise ExtractionFailed(f"Error extracting {archive.name}: {diagnostics}")

        if not expected.is_file():
            logger.error("Extracted file not found for %s", archive.name)
            raise ExtractionFailed(f"Extracted file {expected.name} not found")

        logger.info("Uncompressed %s into %s", archive.name, expected.name)
        return expected
