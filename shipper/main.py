"""Shipper CLI: capture the oplog, sync artifacts, upload full dumps."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any

import httpx
from pymongo import MongoClient

from shipper.capture import CaptureStatus, OplogCapturer
from shipper.checkpoint import CheckpointStore
from shipper.config import ShipperSettings
from shipper.transfer import TransferClient, validate_server_url
from shipper.uploader import SyncStatus, Uploader
from vault.exceptions import BackupError, NoNewEntries
from vault.logging_config import configure_logging
from vault.services.archive_service import SevenZip

logger = logging.getLogger(__name__)

OPLOG_DATABASE = "local"
OPLOG_COLLECTION = "oplog.rs"


def _transfer_client(settings: ShipperSettings) -> TransferClient:
    server_url = validate_server_url(settings.server_url, settings.allow_insecure_http)
    return TransferClient(
        server_url,
        settings.api_key,
        file_type=settings.file_type,
        timeout=settings.request_timeout_seconds,
    )


def _capture(settings: ShipperSettings, loop: bool) -> int:
    client: MongoClient[dict[str, Any]] = MongoClient(settings.mongo_uri)
    try:
        capturer = OplogCapturer(
            settings,
            client[OPLOG_DATABASE][OPLOG_COLLECTION],
            CheckpointStore(settings.checkpoint_file),
        )
        if not loop:
            try:
                result = capturer.capture_once()
            except NoNewEntries:
                print("No new oplog entries")
                return 0
            except BackupError as exc:
                print(f"Error: {exc}")
                return 1
            print(f"Captured {result.artifact_path.name}")
            return 0
        statuses = capturer.run(max_iterations=settings.max_iterations)
    finally:
        client.close()
    return 1 if CaptureStatus.FAILED in statuses else 0


def _sync(settings: ShipperSettings, once: bool) -> int:
    archiver = SevenZip(settings.sevenzip_binary, settings.archive_timeout_seconds)
    with _transfer_client(settings) as client:
        uploader = Uploader(settings, client, archiver)
        max_iterations = 1 if once else settings.max_iterations
        results = uploader.run(max_iterations=max_iterations)
    return 1 if any(r.status is SyncStatus.FAILED for r in results) else 0


def _upload_full(settings: ShipperSettings, path: Path) -> int:
    if not path.is_file():
        print(f"Error: {path} is not a file")
        return 1
    with _transfer_client(settings) as client:
        try:
            result = client.upload_chunked(
                path,
                settings.chunk_size_bytes,
                settings.hash_algorithm,
                retries=settings.chunk_retries,
                threshold_bytes=settings.checksum_size_threshold_bytes,
            )
        except (BackupError, httpx.HTTPError) as exc:
            print(f"Error: {exc}")
            return 1
    print(f"Uploaded {result['file_name']} ({result['size']} bytes, {result['checksum']})")
    return 0


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="shipper",
        description="Ship MongoDB oplog backups to a backup vault",
    )
    subparsers = parser.add_subparsers(dest="command")

    capture_parser = subparsers.add_parser("capture", help="Capture new oplog entries")
    capture_parser.add_argument(
        "--loop", action="store_true", help="Keep capturing at the configured interval"
    )
    sync_parser = subparsers.add_parser("sync", help="Upload captured artifacts")
    sync_parser.add_argument("--once", action="store_true", help="Upload one artifact and exit")
    full_parser = subparsers.add_parser("upload-full", help="Upload a full dump in chunks")
    full_parser.add_argument("path", help="File to upload")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        sys.exit(1)

    settings = ShipperSettings()
    configure_logging(settings.debug, settings.log_file)
    try:
        settings.ensure_directories()
    except OSError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    try:
        if args.command == "capture":
            code = _capture(settings, args.loop)
        elif args.command == "sync":
            code = _sync(settings, args.once)
        else:
            code = _upload_full(settings, Path(args.path))
    except ValueError as exc:
        print(f"Error: {exc}")
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
