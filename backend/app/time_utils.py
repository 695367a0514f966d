from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Optional

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_order_date(value) -> Optional[datetime]:
    """
    Parse the creation date carried on an external order.

    A bare "YYYY-MM-DD" is pinned to 12:00 UTC of that day so the calendar
    date survives conversion into any local timezone. Anything unparseable
    yields None rather than an error.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    s = value.strip()
    if _DATE_ONLY.match(s):
        return datetime.strptime(s, "%Y-%m-%d").replace(hour=12)
    try:
        return parse_iso_datetime(s)
    except ValueError:
        return None


def format_api_date(dt: datetime) -> str:
    """Date filter format accepted by the order API (YYYY-MM-DD)."""
    return dt.strftime("%Y-%m-%d")


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")
