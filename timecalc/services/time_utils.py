from __future__ import annotations

from datetime import date, datetime, time
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from timecalc.settings import DEFAULT_CALC_TIMEZONE, get_settings

MINUTES_PER_DAY = 24 * 60


@lru_cache
def _calc_timezone() -> ZoneInfo:
    raw_name = (get_settings().calc_timezone or "").strip() or DEFAULT_CALC_TIMEZONE
    try:
        return ZoneInfo(raw_name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo(DEFAULT_CALC_TIMEZONE)


def local_wall_clock(ts: datetime) -> datetime:
    # Naive timestamps are already local wall-clock time.
    if ts.tzinfo is None:
        return ts
    return ts.astimezone(_calc_timezone()).replace(tzinfo=None)


def local_date(ts: datetime) -> date:
    return local_wall_clock(ts).date()


def minutes_since_day_start(day_date: date, ts: datetime) -> int:
    """Minutes from ``day_date`` 00:00; negative for the day before, >= 1440 for the day after."""
    midnight = datetime.combine(day_date, time.min)
    return int((local_wall_clock(ts) - midnight).total_seconds() // 60)


def calculate_overlap(start1: int, end1: int, start2: int, end2: int) -> int:
    return max(0, min(end1, end2) - max(start1, start2))


def in_window(value: int, window_from: int | None, window_to: int | None) -> bool:
    if window_from is None or window_to is None:
        return False
    return window_from <= value <= window_to


def nearest_anchor(value: int, anchor: int) -> int:
    """Shift ``anchor`` by whole days so it lies closest to ``value``."""
    days = round((value - anchor) / MINUTES_PER_DAY)
    return anchor + days * MINUTES_PER_DAY


def format_minutes(value: int) -> str:
    sign = "-" if value < 0 else ""
    hours, minutes = divmod(abs(value), 60)
    return f"{sign}{hours:02d}:{minutes:02d}"
