"""First and last sync dates of mapping rows: lax input -> strict timezone-aware output."""

from __future__ import annotations

from datetime import datetime, timezone

import pendulum


def parse_datetime(value: str | datetime, default_tz: str = "UTC") -> datetime:
    """Parse a mapping row's stored sync date into a timezone-aware datetime.

    Accepts ISO 8601 strings as written by browsers (``2021-06-01T10:00:00.000Z``)
    as well as the offset form written by this package. Missing timezone
    defaults to ``default_tz``.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=pendulum.timezone(default_tz))  # type: ignore[arg-type]
        return value

    parsed = pendulum.parse(value.strip(), tz=default_tz, strict=False)
    if not isinstance(parsed, pendulum.DateTime):
        # pendulum.parse returns Date for date-only strings
        parsed = pendulum.datetime(
            parsed.year, parsed.month, parsed.day, tz=default_tz  # type: ignore[union-attr]
        )
    return parsed  # type: ignore[return-value]


def now_utc() -> datetime:
    """Return the current UTC datetime, stamped on a row when its asset is synced."""
    return datetime.now(timezone.utc)


def format_iso(dt: datetime) -> str:
    """Format a sync date as ISO 8601 for ``firstSyncDate``/``lastSyncDate`` in the mapping file."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()
