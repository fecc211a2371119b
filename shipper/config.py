"""Shipper configuration loaded from ``SHIPPER_``-prefixed environment variables."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ShipperSettings(BaseSettings):
    """Source-side settings: oplog capture, packaging and upload."""

    model_config = SettingsConfigDict(
        env_prefix="SHIPPER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False
    log_file: Path | None = None

    # Source
    mongo_uri: str = "mongodb://localhost:27017/?directConnection=true"
    initial_position: Literal["latest", "oplog_start"] = "latest"
    capture_timezone: str = "UTC"

    # Remote vault
    server_url: str = "http://localhost:54322"
    api_key: str = ""
    allow_insecure_http: bool = False
    request_timeout_seconds: float = Field(default=300.0, gt=0)
    file_type: str = "mongodb"

    # Integrity
    hash_algorithm: str = "sha256"
    checksum_size_threshold_mb: int = Field(default=100, ge=0)

    # Storage
    checkpoint_file: Path = Path("./data/last_ts.json")
    temp_dir: Path = Path("./data/temp")
    incremental_dir: Path = Path("./data/incremental")
    compressed_dir: Path = Path("./data/compressed")
    synced_dir: Path = Path("./data/synced")
    full_dir: Path = Path("./data/full")

    # Archiver
    sevenzip_binary: str = "7z"
    archive_timeout_seconds: int = Field(default=3600, ge=1)

    # Chunked transfer
    chunk_size_mb: int = Field(default=16, ge=1)
    chunk_retries: int = Field(default=3, ge=0)

    # Loops
    capture_interval_seconds: float = Field(default=60.0, gt=0)
    sync_poll_interval_seconds: float = Field(default=600.0, gt=0)
    error_backoff_seconds: float = Field(default=600.0, gt=0)
    max_iterations: int | None = Field(default=None, ge=1)

    @property
    def checksum_size_threshold_bytes(self) -> int:
        return self.checksum_size_threshold_mb * 1024 * 1024

    @property
    def chunk_size_bytes(self) -> int:
        return self.chunk_size_mb * 1024 * 1024

    def ensure_directories(self) -> None:
        """Create the working directories if they are missing."""
        self.checkpoint_file.parent.mkdir(parents=True, exist_ok=True)
        for directory in (
            self.temp_dir,
            self.incremental_dir,
            self.compressed_dir,
            self.synced_dir,
            self.full_dir,
        ):
            directory.mkdir(parents=True, exist_ok=True)
