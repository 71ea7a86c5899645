"""
Timestamp utilities for consistent time handling across the system.
"""

from datetime import datetime, timezone
from typing import Optional


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 date or datetime string.

    Date-only values mean midnight UTC and naive datetimes are taken as UTC, so
    any two parsed values can be compared.

    Args:
        value: ISO-8601 string, e.g. '2024-01-10' or '2024-01-10T09:30:00Z'

    Returns:
        Timezone-aware datetime, or None if the value is empty or not ISO-8601
    """
    if not value or not isinstance(value, str):
        return None

    candidate = value.strip()
    if candidate.endswith(('Z', 'z')):
        candidate = candidate[:-1] + '+00:00'
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def within(value: Optional[str], start: datetime, end: datetime) -> bool:
    """True when ``value`` parses and lies in the inclusive range [start, end]."""
    parsed = parse_iso(value)
    return parsed is not None and start <= parsed <= end
