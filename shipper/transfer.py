"""HTTP client for the backup vault: password exchange and uploads."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

import httpx

from vault.exceptions import ArtifactAlreadyReceived, ArtifactNotFound, ChecksumMismatch
from vault.services.checksum_service import calculate_checksum, new_hash
from vault.services.chunk_service import iter_chunks

if TYPE_CHECKING:
    from pathlib import Path

    from vault.services.chunk_service import Chunk

logger = logging.getLogger(__name__)

_LOCALHOST_HOSTS = {"localhost", "127.0.0.1", "::1"}


def validate_server_url(server_url: str, allow_insecure_http: bool = False) -> str:
    """Validate server URL and enforce HTTPS for non-localhost hosts by default."""
    normalized = server_url.strip().rstrip("/")
    parsed = urlparse(normalized)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("Server URL must include scheme and host (e.g. https://example.com)")

    hostname = parsed.hostname
    if parsed.scheme == "http" and not allow_insecure_http and hostname not in _LOCALHOST_HOSTS:
        raise ValueError(
            "HTTPS is required for non-localhost servers. "
            "Set SHIPPER_ALLOW_INSECURE_HTTP=true only on trusted networks."
        )

    return normalized


def _detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return resp.text


class TransferClient:
    """Client for the vault's password and upload endpoints."""

    def __init__(
        self,
        server_url: str,
        api_key: str,
        file_type: str = "mongodb",
        timeout: float = 300.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self.file_type = file_type
        self.client = httpx.Client(
            base_url=self.server_url,
            headers={"apikey": api_key},
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> TransferClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def generate_password(self, filename: str) -> str:
        """Register ``filename`` with the vault and return its password.

        Raises ArtifactAlreadyReceived when the vault already holds the upload.
        """
        resp = self.client.post(
            "/password/generate",
            json={"filename": filename},
            headers={"type": self.file_type},
        )
        if resp.status_code == 409:
            raise ArtifactAlreadyReceived(_detail(resp))
        resp.raise_for_status()
        password: str = resp.json()
        return password

    def retrieve_password(self, filename: str) -> str:
        resp = self.client.post(
            "/password/retrieve",
            json={"filename": filename},
            headers={"type": self.file_type},
        )
        if resp.status_code == 404:
            raise ArtifactNotFound(_detail(resp))
        resp.raise_for_status()
        password: str = resp.json()
        return password

    def upload_file(self, path: Path, checksum: str, algorithm: str) -> dict[str, Any]:
        """Upload a packaged artifact as one multipart request."""
        with open(path, "rb") as f:
            resp = self.client.post(
                "/upload",
                files={"file": (path.name, f, "application/zip")},
                data={"checksum": checksum, "filename": path.name, "algorithm": algorithm},
            )
        resp.raise_for_status()
        result: dict[str, Any] = resp.json()
        logger.info("Uploaded %s (%s bytes)", path.name, result.get("size"))
        return result

    def upload_chunk(self, file_name: str, chunk: Chunk, algorithm: str) -> httpx.Response:
        """Upload one chunk. Returns the raw response; callers decide on retries."""
        h = new_hash(algorithm)
        h.update(chunk.data)
        return self.client.post(
            "/upload_full",
            files={"file": (file_name, chunk.data, "application/octet-stream")},
            data={
                "chunk_index": str(chunk.index),
                "file_name": file_name,
                "checksum": h.hexdigest(),
                "total_chunks": str(chunk.total_count),
            },
            headers={"algorithm": algorithm},
        )

    def assemble(self, file_name: str, total_chunks: int, algorithm: str) -> dict[str, Any]:
        resp = self.client.post(
            "/assemble",
            json={"file_name": file_name, "total_chunks": total_chunks},
            headers={"algorithm": algorithm},
        )
        resp.raise_for_status()
        result: dict[str, Any] = resp.json()
        return result

    def upload_chunked(
        self,
        path: Path,
        chunk_size: int,
        algorithm: str,
        retries: int = 3,
        threshold_bytes: int = 100 * 1024 * 1024,
    ) -> dict[str, Any]:
        """Upload a large file in chunks, assemble it remotely and verify the result.

        A chunk rejected with 400 (checksum mismatch in transit) is re-sent up
        to ``retries`` times.  Raises ChecksumMismatch if the assembled file's
        checksum differs from the local one.
        """
        file_name = path.name
        total = 0
        for chunk in iter_chunks(path, chunk_size):
            total = chunk.total_count
            for attempt in range(retries + 1):
                resp = self.upload_chunk(file_name, chunk, algorithm)
                if resp.status_code != 400 or attempt == retries:
                    break
                logger.warning(
                    "Chunk %d of %s rejected (%s), retrying",
                    chunk.index,
                    file_name,
                    _detail(resp),
                )
            resp.raise_for_status()
            logger.info("Uploaded chunk %d/%d of %s", chunk.index + 1, total, file_name)

        result = self.assemble(file_name, total, algorithm)
        local = calculate_checksum(path, algorithm, threshold_bytes)
        if result["checksum"] != local:
            logger.error(
                "Assembled checksum for %s differs: local %s, remote %s",
                file_name,
                local,
                result["checksum"],
            )
            raise ChecksumMismatch(local, result["checksum"], subject=file_name)
        logger.info("Full upload of %s verified (%d chunks)", file_name, total)
        return result
