"""Datetime helpers shared across the application."""

from __future__ import annotations

from datetime import UTC, date, datetime

__all__ = [
    "ensure_utc",
    "format_filter_date",
    "format_ics_datetime",
    "parse_rfc3339",
]


def ensure_utc(value: datetime | None) -> datetime | None:
    """Return ``value`` converted to UTC, treating naive values as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_rfc3339(value: object) -> datetime | None:
    """Parse a JMAP ``UTCDate``/``Date`` string; return ``None`` when unusable."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return ensure_utc(parsed)


def format_ics_datetime(value: datetime) -> str:
    """Render ``value`` in the iCalendar UTC form ``YYYYMMDDTHHMMSSZ``."""
    normalized = ensure_utc(value)
    assert normalized is not None
    return normalized.strftime("%Y%m%dT%H%M%SZ")


def format_filter_date(value: date) -> str:
    """Render a date bound as the midnight ``UTCDate`` JMAP filters expect."""
    return f"{value.isoformat()}T00:00:00Z"
