"""Timezone-aware UTC timestamp utilities.

All backend code should use these helpers instead of datetime.utcnow()
or datetime.now(). Every stored timestamp carries a +00:00 offset and a
fixed microsecond width, so ISO strings sort the same way as the instants
they represent (events are ordered by created_at, then id).
"""

from datetime import datetime, timedelta, timezone


def now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def isoformat(dt: datetime) -> str:
    """Serialize with a fixed-width fraction so lexical order matches time order."""
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def isonow() -> str:
    """Return the current UTC time as an ISO 8601 string with +00:00 offset."""
    return isoformat(now())


def isoafter(seconds: float) -> str:
    """ISO timestamp ``seconds`` from now (lease expiries)."""
    return isoformat(now() + timedelta(seconds=seconds))


def parse_timestamp(iso_str: str) -> datetime:
    """Parse an ISO timestamp, assuming UTC if no timezone info.

    SQLite CURRENT_TIMESTAMP defaults are naive and space-separated.
    """
    dt = datetime.fromisoformat(iso_str.replace(" ", "T", 1))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
