# carebook/timeutils.py
import re
from datetime import date, datetime, timezone
from typing import Optional

import pytz

from .exceptions import InvalidInput

HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")
DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_hhmm(value: str) -> int:
    """'09:30' -> 570 minutes since midnight."""
    if not isinstance(value, str) or not HHMM_RE.match(value):
        raise InvalidInput(f"Invalid time '{value}', expected HH:MM")
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def format_minutes(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def parse_date(value) -> date:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not DATE_RE.match(value):
        raise InvalidInput(f"Invalid date '{value}', expected YYYY-MM-DD")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise InvalidInput(f"Invalid date '{value}', expected YYYY-MM-DD")


def day_of_week(day: date) -> int:
    """0=Sunday ... 6=Saturday."""
    return (day.weekday() + 1) % 7


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    # Naive datetimes are treated as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def get_timezone(name: Optional[str], default: str = "UTC"):
    try:
        return pytz.timezone(name or default)
    except pytz.UnknownTimeZoneError:
        return pytz.timezone(default)


def local_now(tz_name: Optional[str], now: Optional[datetime] = None, default: str = "UTC") -> datetime:
    """Wall-clock time in the provider's timezone."""
    now = ensure_aware(now or utcnow())
    return now.astimezone(get_timezone(tz_name, default))

