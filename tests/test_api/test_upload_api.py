"""Tests for whole-file artifact upload."""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

import pytest

from vault.services.artifact_service import get_artifact

if TYPE_CHECKING:
    from httpx import AsyncClient
    from sqlalchemy.ext.asyncio import AsyncSession

    from vault.config import Settings

FILENAME = "incremental-backup-2024-03-01--09-15-00-1709284500-7-i3-u1-d1.jsonl.zip"
PAYLOAD = b"PK\x03\x04 pretend this is an encrypted zip"


async def _register(client: AsyncClient, filename: str = FILENAME) -> None:
    resp = await client.post(
        "/password/generate", json={"filename": filename}, headers={"type": "mongodb"}
    )
    assert resp.status_code == 200


async def _upload(
    client: AsyncClient,
    checksum: str,
    filename: str = FILENAME,
    payload: bytes = PAYLOAD,
    algorithm: str = "sha256",
) -> tuple[int, dict[str, object]]:
    resp = await client.post(
        "/upload",
        files={"file": (filename, payload, "application/zip")},
        data={"checksum": checksum, "filename": filename, "algorithm": algorithm},
    )
    return resp.status_code, resp.json()


class TestUpload:
    @pytest.mark.asyncio
    async def test_verified_upload_is_committed(
        self, client: AsyncClient, test_settings: Settings, db_session: AsyncSession
    ) -> None:
        await _register(client)
        status, body = await _upload(client, hashlib.sha256(PAYLOAD).hexdigest())

        assert status == 200
        assert body["size"] == len(PAYLOAD)
        assert (test_settings.compressed_dir / FILENAME).read_bytes() == PAYLOAD
        artifact = await get_artifact(db_session, FILENAME)
        assert artifact is not None
        assert artifact.received_time is not None
        assert (artifact.t, artifact.i) == (1709284500, 7)

    @pytest.mark.asyncio
    async def test_checksum_mismatch_is_400_and_deletes_bytes(
        self, client: AsyncClient, test_settings: Settings, db_session: AsyncSession
    ) -> None:
        await _register(client)
        status, body = await _upload(client, "0" * 64)

        assert status == 400
        assert "Checksum mismatch" in str(body["detail"])
        assert list(test_settings.compressed_dir.iterdir()) == []
        artifact = await get_artifact(db_session, FILENAME)
        assert artifact is not None
        assert artifact.wrong_checksum == hashlib.sha256(PAYLOAD).hexdigest()
        assert artifact.received_time is None

    @pytest.mark.asyncio
    async def test_retry_after_mismatch_succeeds(self, client: AsyncClient) -> None:
        await _register(client)
        assert (await _upload(client, "0" * 64))[0] == 400
        status, _ = await _upload(client, hashlib.sha256(PAYLOAD).hexdigest())
        assert status == 200

    @pytest.mark.asyncio
    async def test_unregistered_artifact_is_400(
        self, client: AsyncClient, test_settings: Settings
    ) -> None:
        status, body = await _upload(client, hashlib.sha256(PAYLOAD).hexdigest())
        assert status == 400
        assert "not found in db" in str(body["detail"])
        assert list(test_settings.compressed_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_badly_named_upload_is_400(self, client: AsyncClient) -> None:
        status, body = await _upload(client, "x", filename="../../etc/passwd")
        assert status == 400
        assert "expected style" in str(body["detail"])

    @pytest.mark.asyncio
    async def test_unknown_algorithm_is_422(self, client: AsyncClient) -> None:
        await _register(client)
        status, body = await _upload(client, "x", algorithm="crc-nope")
        assert status == 422
        assert "Unsupported checksum algorithm" in str(body["detail"])

    @pytest.mark.asyncio
    async def test_password_request_after_upload_is_409(self, client: AsyncClient) -> None:
        await _register(client)
        await _upload(client, hashlib.sha256(PAYLOAD).hexdigest())
        resp = await client.post(
            "/password/generate", json={"filename": FILENAME}, headers={"type": "mongodb"}
        )
        assert resp.status_code == 409
