"""Vault configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_API_KEY = "change-me-in-production"


class Settings(BaseSettings):
    """Backup vault settings: transfer server and replay engine."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    api_key: str = DEFAULT_API_KEY
    debug: bool = False
    log_file: Path | None = None

    # Database (artifact records)
    database_url: str = "sqlite+aiosqlite:///data/db/vault.db"

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=54322, ge=1, le=65535)

    # Storage
    compressed_dir: Path = Path("./compressed")
    incremental_dir: Path = Path("./incremental")
    restored_dir: Path = Path("./restored")
    full_dir: Path = Path("./full")
    keys_dir: Path = Path("./crypto_keys")

    # Transfer
    checksum_size_threshold_mb: int = Field(default=20, ge=0)
    max_chunk_size_mb: int = Field(default=64, ge=1)

    # Archiver
    sevenzip_binary: str = "7z"
    archive_timeout_seconds: int = Field(default=3600, ge=1)

    # Replay
    restore_enabled: bool = False
    replay_mongo_uri: str = "mongodb://localhost:27017"
    replay_poll_interval_seconds: float = Field(default=60.0, gt=0)
    replay_error_backoff_seconds: float = Field(default=60.0, gt=0)
    replay_max_iterations: int | None = Field(default=None, ge=1)

    @property
    def checksum_size_threshold_bytes(self) -> int:
        return self.checksum_size_threshold_mb * 1024 * 1024

    def validate_runtime_security(self) -> None:
        """Validate security-critical production settings."""
        if self.debug:
            return

        violations: list[str] = []
        if self.api_key == DEFAULT_API_KEY or len(self.api_key) < 32:
            violations.append("API_KEY must be overridden with a high-entropy value (>=32 chars)")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Insecure production configuration: {joined}")

    def ensure_directories(self) -> None:
        """Create the storage directories if they are missing."""
        for directory in (
            self.compressed_dir,
            self.incremental_dir,
            self.restored_dir,
            self.full_dir,
            self.keys_dir,
        ):
            directory.mkdir(parents=True, exist_ok=True)
