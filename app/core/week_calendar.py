"""Week math for weekly instances: ISO year-week keys, Monday..Sunday bounds, day tokens."""

from datetime import date, datetime, timedelta, timezone
from typing import Dict, Optional, Tuple, Union
from zoneinfo import ZoneInfo

from app.core.config import settings
from app.core.exceptions import InvalidDayToken

DAY_NAMES = ("MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY", "SATURDAY", "SUNDAY")

_CHINESE_DAYS = ("一", "二", "三", "四", "五", "六", "日")


def _build_token_map() -> Dict[str, int]:
    tokens: Dict[str, int] = {}
    for ordinal, name in enumerate(DAY_NAMES, start=1):
        tokens[name] = ordinal
        tokens[name[:3]] = ordinal
        tokens[str(ordinal)] = ordinal
    for ordinal, char in enumerate(_CHINESE_DAYS, start=1):
        tokens["周" + char] = ordinal
        tokens["星期" + char] = ordinal
    tokens["周天"] = 7
    tokens["星期天"] = 7
    return tokens


_DAY_TOKENS = _build_token_map()

DayToken = Union[int, str]


def day_ordinal(token: DayToken) -> int:
    """Return 1 (Monday) .. 7 (Sunday) for a numeric, English or Chinese day token."""
    if isinstance(token, bool):
        raise InvalidDayToken(token)
    if isinstance(token, int):
        if 1 <= token <= 7:
            return token
        raise InvalidDayToken(token)
    if not isinstance(token, str):
        raise InvalidDayToken(token)
    ordinal = _DAY_TOKENS.get(token.strip().upper())
    if ordinal is None:
        raise InvalidDayToken(token)
    return ordinal


def normalize_day(token: DayToken) -> str:
    """Canonical stored form of a day token, e.g. "周一" -> "MONDAY"."""
    return DAY_NAMES[day_ordinal(token) - 1]


def week_bounds(d: date) -> Tuple[date, date]:
    monday = d - timedelta(days=d.weekday())
    return monday, monday + timedelta(days=6)


def year_week_key(d: date) -> str:
    """ISO-8601 week key "YYYY-WW" using the ISO week-based year (2024-12-30 -> "2025-01")."""
    iso_year, iso_week, _ = d.isocalendar()
    return f"{iso_year}-{iso_week:02d}"


def resolve_date(week_start: date, day_token: DayToken) -> date:
    return week_start + timedelta(days=day_ordinal(day_token) - 1)


def local_now(tz_name: Optional[str] = None) -> datetime:
    """Naive wall-clock time in the configured schedule timezone."""
    tz = ZoneInfo(tz_name or settings.schedule_timezone)
    return datetime.now(tz).replace(tzinfo=None)


def local_today(tz_name: Optional[str] = None) -> date:
    return local_now(tz_name).date()


def utc_now() -> datetime:
    """Naive UTC timestamp for the audit columns, which are stored without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
