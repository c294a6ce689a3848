from __future__ import annotations

import calendar
import logging
import re
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from planner.constants import MONTH_KEY_PREFIX

logger = logging.getLogger(__name__)

_MONTH_KEY_RE = re.compile(r"^todo-calendar-(\d{4})-(\d{2})$")
_DISPLAY_TIME_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*([AaPp][Mm])\s*$")


class SystemClock:
    def __init__(self, timezone_name: str | None = None) -> None:
        self._tz = None
        if timezone_name:
            try:
                self._tz = ZoneInfo(timezone_name)
            except (ZoneInfoNotFoundError, ValueError):
                logger.warning("Unknown timezone %r; using local time", timezone_name)

    def now(self) -> datetime:
        if self._tz is None:
            return datetime.now()
        return datetime.now(self._tz)


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return parse_date_key(str(value))


def date_key(value) -> str:
    return _as_date(value).strftime("%Y-%m-%d")


def parse_date_key(key: str) -> date:
    try:
        return date.fromisoformat(str(key or "").strip())
    except ValueError:
        raise ValueError(f"Invalid date key: {key!r}") from None


def is_date_key(key) -> bool:
    if not isinstance(key, str) or len(key) != 10:
        return False
    try:
        parse_date_key(key)
    except ValueError:
        return False
    return True


def month_key(year: int, month: int) -> str:
    if not 1 <= int(month) <= 12:
        raise ValueError(f"Invalid month: {month}")
    return f"{MONTH_KEY_PREFIX}{int(year):04d}-{int(month):02d}"


def month_key_for(value) -> str:
    day = _as_date(value)
    return month_key(day.year, day.month)


def is_month_key(key) -> bool:
    if not isinstance(key, str):
        return False
    match = _MONTH_KEY_RE.match(key)
    return bool(match) and 1 <= int(match.group(2)) <= 12


def parse_month_key(key: str) -> tuple[int, int]:
    match = _MONTH_KEY_RE.match(str(key or ""))
    if not match or not 1 <= int(match.group(2)) <= 12:
        raise ValueError(f"Invalid month key: {key!r}")
    return int(match.group(1)), int(match.group(2))


def shift_month(key: str, delta: int) -> str:
    year, month = parse_month_key(key)
    index = year * 12 + (month - 1) + int(delta)
    return month_key(index // 12, index % 12 + 1)


def month_bounds(year: int, month: int) -> tuple[date, date]:
    last_day = calendar.monthrange(int(year), int(month))[1]
    return date(int(year), int(month), 1), date(int(year), int(month), last_day)


def date_in_month(key: str, month: str) -> bool:
    return is_date_key(key) and month_key_for(key) == month


def today_key(now: datetime) -> str:
    return date_key(now)


def yesterday_key(now: datetime) -> str:
    return date_key(_as_date(now) - timedelta(days=1))


def is_today(key: str | None, now: datetime) -> bool:
    return bool(key) and key == today_key(now)


def is_yesterday(key: str | None, now: datetime) -> bool:
    return bool(key) and key == yesterday_key(now)


def is_past_day(key: str, now: datetime) -> bool:
    return parse_date_key(key) < _as_date(now)


def parse_reminder_time(value) -> tuple[int, int]:
    if not value or not isinstance(value, str):
        raise ValueError("Invalid time string")
    parts = value.strip().split(":")
    if len(parts) != 2:
        raise ValueError("Invalid time format. Expected HH:MM")
    try:
        hours, minutes = int(parts[0]), int(parts[1])
    except ValueError:
        raise ValueError("Invalid time format. Expected HH:MM") from None
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValueError("Invalid time format. Expected HH:MM")
    return hours, minutes


def is_valid_reminder_time(value) -> bool:
    try:
        parse_reminder_time(value)
    except ValueError:
        return False
    return True


def parse_display_time(value: str) -> time:
    """Parse the task list's ``hh:mm AM/PM`` display time."""
    match = _DISPLAY_TIME_RE.match(str(value or ""))
    if not match:
        raise ValueError(f"Invalid time {value!r}. Expected hh:mm AM/PM")
    hours, minutes, meridiem = int(match.group(1)), int(match.group(2)), match.group(3).upper()
    if not (1 <= hours <= 12 and 0 <= minutes <= 59):
        raise ValueError(f"Invalid time {value!r}. Expected hh:mm AM/PM")
    if meridiem == "AM":
        hours = 0 if hours == 12 else hours
    else:
        hours = 12 if hours == 12 else hours + 12
    return time(hours, minutes)


def format_display_time(value: time) -> str:
    return value.strftime("%I:%M %p")


def display_to_reminder_time(value: str) -> str:
    return parse_display_time(value).strftime("%H:%M")


def at_time_on(key: str, hhmm: str, now: datetime) -> datetime:
    """Wall-clock datetime for ``hhmm`` on day ``key``, in the same zone as ``now``."""
    hours, minutes = parse_reminder_time(hhmm)
    return datetime.combine(parse_date_key(key), time(hours, minutes), tzinfo=now.tzinfo)
