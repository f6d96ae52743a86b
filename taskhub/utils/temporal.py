
"""
Temporal helpers shared by the services.

All timestamps are timezone-aware UTC datetimes in memory and ISO-8601 text
in the database.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)

def to_db(value: Optional[datetime]) -> Optional[str]:
    """
    Serialize a datetime for storage.

    Naive datetimes are assumed to already be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec='microseconds')

def from_db(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if value is None or value == '':
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed

def due_date_from_offset(offset_days: Optional[int], base: Optional[datetime] = None) -> Optional[datetime]:
    """
    Compute a due date as ``base + offset_days``.

    Args:
        offset_days: Day offset from the template section, or None
        base: Reference instant (defaults to now)

    Returns:
        The due date, or None when no offset is configured
    """
    if offset_days is None:
        return None
    base = base or utc_now()
    return base + timedelta(days=offset_days)

def days_ago(days: int, base: Optional[datetime] = None) -> datetime:
    """Instant ``days`` days before ``base`` (defaults to now)."""
    return (base or utc_now()) - timedelta(days=days)
