"""Tests for chunked upload and assembly."""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from httpx import AsyncClient

    from vault.config import Settings

FILE_NAME = "mongodump-2024-03-01.archive"
PARTS = [b"alpha-" * 10, b"bravo-" * 10, b"charlie"]


async def _send_chunk(
    client: AsyncClient,
    index: int,
    data: bytes,
    total: int = len(PARTS),
    checksum: str | None = None,
) -> int:
    resp = await client.post(
        "/upload_full",
        files={"file": (FILE_NAME, data, "application/octet-stream")},
        data={
            "chunk_index": str(index),
            "file_name": FILE_NAME,
            "checksum": checksum or hashlib.sha256(data).hexdigest(),
            "total_chunks": str(total),
        },
        headers={"algorithm": "sha256"},
    )
    return resp.status_code


async def _assemble(client: AsyncClient, total: int = len(PARTS)) -> tuple[int, dict[str, object]]:
    resp = await client.post(
        "/assemble", json={"file_name": FILE_NAME, "total_chunks": total}
    )
    return resp.status_code, resp.json()


class TestChunkedUpload:
    @pytest.mark.asyncio
    async def test_out_of_order_chunks_assemble_to_original(
        self, client: AsyncClient, test_settings: Settings
    ) -> None:
        for index in (1, 2, 0):
            assert await _send_chunk(client, index, PARTS[index]) == 200

        status, body = await _assemble(client)
        whole = b"".join(PARTS)
        assert status == 200
        assert body == {
            "file_name": FILE_NAME,
            "checksum": hashlib.sha256(whole).hexdigest(),
            "algorithm": "sha256",
            "size": len(whole),
        }
        assert (test_settings.full_dir / FILE_NAME).read_bytes() == whole
        assert not (test_settings.full_dir / f"{FILE_NAME}.chunks").exists()

    @pytest.mark.asyncio
    async def test_missing_chunk_names_index(
        self, client: AsyncClient, test_settings: Settings
    ) -> None:
        await _send_chunk(client, 0, PARTS[0])
        await _send_chunk(client, 2, PARTS[2])

        status, body = await _assemble(client)
        assert status == 400
        assert body["detail"] == f"Chunk 1 of {FILE_NAME} is missing"
        assert not (test_settings.full_dir / FILE_NAME).exists()

        assert await _send_chunk(client, 1, PARTS[1]) == 200
        status, _ = await _assemble(client)
        assert status == 200

    @pytest.mark.asyncio
    async def test_corrupt_chunk_is_rejected_then_resent(
        self, client: AsyncClient, test_settings: Settings
    ) -> None:
        status = await _send_chunk(
            client, 0, b"garbled", checksum=hashlib.sha256(PARTS[0]).hexdigest()
        )
        assert status == 400
        chunk_dir = test_settings.full_dir / f"{FILE_NAME}.chunks"
        assert not (chunk_dir / "000000.part").exists()

        assert await _send_chunk(client, 0, PARTS[0]) == 200
        assert (chunk_dir / "000000.part").read_bytes() == PARTS[0]

    @pytest.mark.asyncio
    async def test_index_out_of_range_is_400(self, client: AsyncClient) -> None:
        assert await _send_chunk(client, 3, b"x", total=3) == 400

    @pytest.mark.asyncio
    async def test_traversal_file_name_is_422(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/upload_full",
            files={"file": ("x", b"x", "application/octet-stream")},
            data={
                "chunk_index": "0",
                "file_name": "../escape",
                "checksum": hashlib.sha256(b"x").hexdigest(),
                "total_chunks": "1",
            },
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_oversized_chunk_is_413(
        self, client: AsyncClient, test_settings: Settings
    ) -> None:
        test_settings.max_chunk_size_mb = 1
        data = b"x" * (1024 * 1024 + 1)
        assert await _send_chunk(client, 0, data, total=1) == 413
        chunk_dir = test_settings.full_dir / f"{FILE_NAME}.chunks"
        assert list(chunk_dir.glob("*")) == []
