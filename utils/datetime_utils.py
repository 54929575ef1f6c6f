"""
Datetime utilities for consistent timezone handling.

All timestamps inside the pipeline are naive UTC datetimes; anything
coming from an upstream source is converted on the way in.
"""

import math
import re
from datetime import datetime, timedelta, timezone
from typing import Optional, Union


_FDA_DATE_RE = re.compile(r"^\d{8}$")


def utc_now() -> datetime:
    """
    Get current UTC time as a naive datetime (for storage compatibility).

    Returns:
        Current UTC time as a naive datetime object
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse an upstream timestamp into a naive UTC datetime.

    Accepts ISO-8601 strings (with or without a trailing 'Z' or offset),
    plain dates (YYYY-MM-DD) and compact openFDA dates (YYYYMMDD).

    Returns:
        Naive UTC datetime, or None if the value cannot be parsed
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)

    text = str(value).strip()
    if not text:
        return None

    if _FDA_DATE_RE.match(text):
        try:
            return datetime.strptime(text, "%Y%m%d")
        except ValueError:
            return None

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return to_naive_utc(parsed)


def days_until(target: datetime, now: Optional[datetime] = None) -> int:
    """Whole days until target, rounded up (negative for past events)."""
    now = now or utc_now()
    delta = to_naive_utc(target) - now
    return math.ceil(delta / timedelta(days=1))


def days_since(past: datetime, now: Optional[datetime] = None) -> int:
    """Whole days elapsed since past, rounded down."""
    now = now or utc_now()
    return math.floor((now - to_naive_utc(past)) / timedelta(days=1))
