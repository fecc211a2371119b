"""Tests for settings validation and environment loading."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from shipper.config import ShipperSettings
from vault.config import DEFAULT_API_KEY, Settings

if TYPE_CHECKING:
    from pathlib import Path


class TestVaultSettings:
    def test_default_key_rejected_in_production(self) -> None:
        settings = Settings(api_key=DEFAULT_API_KEY, debug=False)
        with pytest.raises(ValueError, match="API_KEY"):
            settings.validate_runtime_security()

    def test_short_key_rejected_in_production(self) -> None:
        with pytest.raises(ValueError, match="Insecure production configuration"):
            Settings(api_key="short", debug=False).validate_runtime_security()

    def test_debug_skips_checks(self) -> None:
        Settings(api_key=DEFAULT_API_KEY, debug=True).validate_runtime_security()

    def test_strong_key_accepted(self) -> None:
        Settings(api_key="k" * 40, debug=False).validate_runtime_security()

    def test_defaults(self) -> None:
        settings = Settings()
        assert settings.port == 54322
        assert settings.checksum_size_threshold_bytes == 20 * 1024 * 1024
        assert settings.restore_enabled is False

    def test_ensure_directories(self, tmp_path: Path) -> None:
        settings = Settings(
            compressed_dir=tmp_path / "c",
            incremental_dir=tmp_path / "i",
            restored_dir=tmp_path / "r",
            full_dir=tmp_path / "f",
            keys_dir=tmp_path / "k",
        )
        settings.ensure_directories()
        for name in "cirfk":
            assert (tmp_path / name).is_dir()


class TestShipperSettings:
    def test_reads_prefixed_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SHIPPER_SERVER_URL", "https://vault.example.com")
        monkeypatch.setenv("SHIPPER_CHUNK_SIZE_MB", "8")
        monkeypatch.setenv("SHIPPER_INITIAL_POSITION", "oplog_start")
        settings = ShipperSettings()
        assert settings.server_url == "https://vault.example.com"
        assert settings.chunk_size_bytes == 8 * 1024 * 1024
        assert settings.initial_position == "oplog_start"

    def test_defaults(self) -> None:
        settings = ShipperSettings()
        assert settings.checksum_size_threshold_bytes == 100 * 1024 * 1024
        assert settings.sync_poll_interval_seconds == 600
        assert settings.file_type == "mongodb"

    def test_rejects_unknown_initial_position(self) -> None:
        with pytest.raises(ValueError):
            ShipperSettings(initial_position="yesterday")  # type: ignore[arg-type]
