import re
from datetime import date, datetime

from services.errors import InvalidDuration, InvalidTimeFormat, ValidationError

_TIME_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")
_DAY_KEY_RE = re.compile(r"^(\d{1,2})_(\d{1,2})_(\d{4})$")


def time_to_minutes(value: str) -> int:
    """'09:30' -> 570"""
    if not isinstance(value, str):
        raise InvalidTimeFormat()
    m = _TIME_RE.match(value.strip())
    if not m:
        raise InvalidTimeFormat(f"Invalid time '{value}'. Use HH:MM (24-hour)")
    return int(m.group(1)) * 60 + int(m.group(2))


def minutes_to_time(minutes: int) -> str:
    # no wraparound past midnight; business hours never need it
    hours, mins = divmod(int(minutes), 60)
    return f"{hours:02d}:{mins:02d}"


def add_minutes(value: str, duration: int) -> str:
    return minutes_to_time(time_to_minutes(value) + check_duration(duration))


def normalize_time(value: str) -> str:
    """'9:05' -> '09:05'"""
    return minutes_to_time(time_to_minutes(value))


def check_duration(duration) -> int:
    if isinstance(duration, bool):
        raise InvalidDuration()
    if isinstance(duration, float) and not duration.is_integer():
        raise InvalidDuration()
    try:
        minutes = int(duration)
    except (TypeError, ValueError):
        raise InvalidDuration()
    if minutes <= 0:
        raise InvalidDuration()
    return minutes


def day_key(value) -> str:
    """
    Canonical day identifier: day_month_year without leading zeros (5_6_2025).
    Built from the calendar fields of the value so the caller's timezone never shifts it.
    """
    if not isinstance(value, (date, datetime)):
        raise ValidationError("day_key expects a date")
    return f"{value.day}_{value.month}_{value.year}"


def parse_day_key(key: str) -> date:
    if not isinstance(key, str):
        raise ValidationError("slot_date must look like 5_6_2025")
    m = _DAY_KEY_RE.match(key.strip())
    if not m:
        raise ValidationError(f"Invalid slot_date '{key}'. Use day_month_year, e.g. 5_6_2025")
    try:
        return date(int(m.group(3)), int(m.group(2)), int(m.group(1)))
    except ValueError:
        raise ValidationError(f"Invalid slot_date '{key}'")


def parse_day(value) -> date:
    """Accept either a day key (5_6_2025) or an ISO date (2025-06-05)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and "-" in value:
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            raise ValidationError(f"Invalid date '{value}'. Use YYYY-MM-DD")
    return parse_day_key(value)
