"""Date and time utilities for RiseUp.

Pure Python date/time functions with ZERO Home Assistant dependencies.
All timestamps written by the integration are UTC ISO 8601 strings; daily
records are keyed by calendar date (YYYY-MM-DD).

Functions:
    - dt_now_utc: Current UTC datetime
    - dt_now_iso: Current UTC datetime as ISO string
    - dt_today_iso: Today's UTC date as ISO string
    - dt_parse: Parse an ISO 8601 / RFC 3339 timestamp into an aware UTC datetime
    - dt_parse_date: Parse a YYYY-MM-DD string
    - dt_format_backup_stamp: Format a datetime for backup filenames
"""

from __future__ import annotations

from datetime import UTC, date, datetime

# Third-party date utilities (no HA dependency)
from dateutil import parser as dt_parser

from .. import const


def dt_now_utc() -> datetime:
    """Return the current datetime in UTC (timezone-aware)."""
    return datetime.now(UTC)


def dt_now_iso() -> str:
    """Return the current UTC datetime as an ISO 8601 string.

    Example:
        "2025-04-07T14:30:00.123456+00:00"
    """
    return dt_now_utc().isoformat()


def dt_today_iso() -> str:
    """Return today's UTC date as an ISO string (YYYY-MM-DD)."""
    return dt_now_utc().date().isoformat()


def dt_parse(value: str | datetime | None) -> datetime | None:
    """Parse a timestamp into a timezone-aware UTC datetime.

    Accepts the RFC 3339 strings Firestore returns (nanosecond precision,
    trailing "Z") as well as Python isoformat output. Naive values are
    assumed to be UTC.

    Returns:
        Aware datetime in UTC, or None when the value cannot be parsed.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = dt_parser.isoparse(value)
        except (ValueError, OverflowError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def dt_parse_date(date_str: str | None) -> date | None:
    """Safely parse a YYYY-MM-DD string into a `datetime.date`."""
    if not date_str or not isinstance(date_str, str):
        return None
    try:
        return date.fromisoformat(date_str)
    except ValueError:
        return None


def dt_format_backup_stamp(dt_obj: datetime) -> str:
    """Format a datetime for use in a backup filename (2025-12-18_14-30-22)."""
    return dt_obj.strftime(const.BACKUP_TIMESTAMP_FORMAT)
