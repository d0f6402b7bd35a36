"""
Date helpers for per-user calendar days.

Timestamps are stored as naive UTC; calendar days (batch dates, streak days,
stat windows) are always taken in the user's configured timezone.
"""
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, List, Tuple

import pytz

from daily_outreach.config import settings

logger = logging.getLogger(__name__)

WEEKDAY_NUMBERS = {
    "mon": 0, "tue": 1, "wed": 2, "thu": 3, "fri": 4, "sat": 5, "sun": 6,
    "monday": 0, "tuesday": 1, "wednesday": 2, "thursday": 3,
    "friday": 4, "saturday": 5, "sunday": 6,
}


def utcnow() -> datetime:
    """Current time as naive UTC, matching how timestamps are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_timezone(name: str = None):
    """Resolve an IANA timezone name, falling back to the default."""
    try:
        return pytz.timezone(name or settings.OUTREACH_DEFAULT_TIMEZONE)
    except pytz.UnknownTimeZoneError:
        logger.warning(f"Unknown timezone '{name}', using {settings.OUTREACH_DEFAULT_TIMEZONE}")
        return pytz.timezone(settings.OUTREACH_DEFAULT_TIMEZONE)


def is_valid_timezone(name: str) -> bool:
    return name in pytz.all_timezones_set


def to_local(moment: datetime, tz) -> datetime:
    """Convert a naive UTC timestamp to an aware local one."""
    if moment.tzinfo is None:
        moment = pytz.utc.localize(moment)
    return moment.astimezone(tz)


def local_date(moment: datetime, tz) -> date:
    """Calendar day of a naive UTC timestamp in the given timezone."""
    return to_local(moment, tz).date()


def local_midnight_utc(day: date, tz) -> datetime:
    """Naive UTC instant at which the local calendar day starts."""
    local_start = tz.localize(datetime.combine(day, time.min))
    return local_start.astimezone(pytz.utc).replace(tzinfo=None)


def local_time_utc(day: date, hour: int, minute: int, tz) -> datetime:
    """Naive UTC instant of a local wall-clock time on a calendar day."""
    local_moment = tz.localize(datetime.combine(day, time(hour, minute)))
    return local_moment.astimezone(pytz.utc).replace(tzinfo=None)


def week_start(day: date, first_weekday: int = None) -> date:
    """First day of the week containing `day` (Monday by default)."""
    if first_weekday is None:
        first_weekday = settings.OUTREACH_WEEK_START
    return day - timedelta(days=(day.weekday() - first_weekday) % 7)


def month_start(day: date) -> date:
    return day.replace(day=1)


def weekday_numbers(names: Iterable[str]) -> List[int]:
    """Map weekday names ('mon', 'Monday', ...) to date.weekday() numbers."""
    numbers = []
    for name in names or []:
        number = WEEKDAY_NUMBERS.get(str(name).strip().lower())
        if number is not None and number not in numbers:
            numbers.append(number)
    return numbers


def parse_schedule_time(value: str) -> Tuple[int, int]:
    """Parse 'HH:MM' into (hour, minute)."""
    hour_str, minute_str = (value or settings.OUTREACH_DEFAULT_SCHEDULE_TIME).split(":")
    hour, minute = int(hour_str), int(minute_str)
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ValueError(f"Invalid schedule time '{value}'")
    return hour, minute
