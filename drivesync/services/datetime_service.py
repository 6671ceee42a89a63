"""Datetime helpers: store format, host time zones, file timestamps."""

from __future__ import annotations

from datetime import datetime, timezone

import pendulum

# Store format: YYYY-MM-DD HH:MM:SS, always UTC, second precision
STORE_FORMAT = "%Y-%m-%d %H:%M:%S"


def now_utc() -> datetime:
    """Return the current UTC datetime truncated to whole seconds."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def to_store_precision(dt: datetime) -> datetime:
    """Normalize a datetime to what survives a store round-trip.

    Naive values are taken as UTC.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0)


def format_store(dt: datetime) -> str:
    """Format a datetime for a store column."""
    return to_store_precision(dt).strftime(STORE_FORMAT)


def parse_store(value: str) -> datetime:
    """Parse a store column value into an aware UTC datetime.

    Rows written by other tools may carry fractional seconds or an ISO ``T``
    separator; those are accepted and truncated.
    """
    value = value.strip()
    try:
        parsed = datetime.strptime(value, STORE_FORMAT)
    except ValueError:
        parsed = pendulum.parse(value, tz="UTC", strict=False)  # type: ignore[assignment]
        if not isinstance(parsed, datetime):
            parsed = datetime(parsed.year, parsed.month, parsed.day)  # type: ignore[union-attr]
    return to_store_precision(parsed)


def from_timestamp(timestamp: float) -> datetime:
    """Convert a filesystem timestamp (``st_mtime``) to store precision."""
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc)


def in_timezone(dt: datetime, tz_name: str) -> pendulum.DateTime:
    """Convert an aware datetime into the given IANA time zone.

    Raises ``pendulum.tz.exceptions.InvalidTimezone`` (a ``ValueError``) for
    unknown zone names.
    """
    tz = pendulum.timezone(tz_name)
    return pendulum.instance(to_aware(dt)).in_timezone(tz)


def to_aware(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt
