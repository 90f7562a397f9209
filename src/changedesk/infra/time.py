"""Time utilities for consistent timestamp handling."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def operator_today(tz_name: str, now: datetime | None = None) -> date:
    """Return today's date in the operator's local timezone.

    Args:
        tz_name: IANA timezone name (e.g. "Atlantic/Reykjavik").
        now: Reference instant, defaults to utc_now(). Must be aware.

    Raises:
        zoneinfo.ZoneInfoNotFoundError: If tz_name is unknown.
    """
    reference = now or utc_now()
    return reference.astimezone(ZoneInfo(tz_name)).date()


def legacy_signature_timestamp(now: datetime | None = None) -> str:
    """Format a UTC instant the way the legacy booking API signs it.

    Example: "2026-02-10 14:03:59".
    """
    reference = (now or utc_now()).astimezone(timezone.utc)
    return reference.strftime("%Y-%m-%d %H:%M:%S")
