"""UTC-everywhere time handling. Eliminates timezone bugs at the source."""

from datetime import datetime, timezone


def now_utc() -> datetime:
    """
    Current time in UTC.

    Use this instead of datetime.now() everywhere.
    """
    return datetime.now(timezone.utc)


def to_utc(dt: datetime | None) -> datetime | None:
    """
    Convert a datetime to UTC. None passes through, for nullable columns.

    Raises ValueError if datetime is naive (no timezone).
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot convert naive datetime to UTC. Datetime must be timezone-aware."
        )
    return dt.astimezone(timezone.utc)
