"""Datetime helpers: record timestamps and capture-window stamps."""

from __future__ import annotations

from datetime import datetime, timezone

import pendulum

# Capture stamp embedded in artifact names: YYYY-MM-DD--HH-MM-SS
CAPTURE_FORMAT = "%Y-%m-%d--%H-%M-%S"


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)


def format_iso(dt: datetime) -> str:
    """Format datetime as ISO 8601 for storage and JSON serialization."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def now_iso() -> str:
    """Current UTC time as ISO 8601."""
    return format_iso(now_utc())


def format_capture_stamp(dt: datetime | None = None, tz: str = "UTC") -> str:
    """Render the human-readable capture stamp in the given timezone.

    The stamp is filename-safe: no colons, no spaces.
    """
    if dt is None:
        local = pendulum.now(tz)
    else:
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        local = pendulum.instance(dt).in_timezone(tz)
    return local.strftime(CAPTURE_FORMAT)


def parse_capture_stamp(value: str, tz: str = "UTC") -> datetime:
    """Parse a capture stamp back into an aware datetime.

    Hours may be written without a leading zero.
    """
    naive = datetime.strptime(value, CAPTURE_FORMAT)
    return naive.replace(tzinfo=pendulum.timezone(tz))  # type: ignore[arg-type]
