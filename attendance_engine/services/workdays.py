from __future__ import annotations

from collections.abc import Iterable, Iterator
from datetime import date, datetime, time, timedelta, timezone
import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from attendance_engine.settings import get_settings

logger = logging.getLogger("attendance_engine.workdays")

# Indexed by date.weekday().
DAY_CODES: tuple[str, ...] = ("MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN")
DEFAULT_WORK_DAYS = "MON,TUE,WED,THU,FRI"
FALLBACK_TIMEZONE = "Asia/Manila"


def normalize_ts(ts_utc: datetime | None) -> datetime:
    if ts_utc is None:
        return datetime.now(timezone.utc)

    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)

    return ts_utc.astimezone(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Like normalize_ts, but keeps missing values missing.

    Naive values are read back from SQLite without tzinfo; they are always
    stored as UTC.
    """
    if value is None:
        return None
    return normalize_ts(value)


def resolve_timezone(name: str | None) -> ZoneInfo:
    raw_name = (name or "").strip() or (get_settings().default_timezone or "").strip() or FALLBACK_TIMEZONE
    try:
        return ZoneInfo(raw_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("timezone_not_found", extra={"timezone": raw_name, "fallback": FALLBACK_TIMEZONE})
        return ZoneInfo(FALLBACK_TIMEZONE)


def local_date(ts: datetime, tz: ZoneInfo) -> date:
    return normalize_ts(ts).astimezone(tz).date()


def local_day_bounds_utc(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    local_start = datetime.combine(day, time.min, tzinfo=tz)
    local_end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return local_start.astimezone(timezone.utc), local_end.astimezone(timezone.utc)


def parse_work_days(raw: str | None) -> frozenset[int]:
    """Turn a team's "MON,TUE,..." setting into weekday indexes.

    A missing setting falls back to Monday-Friday; unknown codes are ignored.
    """
    if raw is None or not raw.strip():
        raw = DEFAULT_WORK_DAYS
    indexes: set[int] = set()
    for token in raw.split(","):
        code = token.strip().upper()
        if code in DAY_CODES:
            indexes.add(DAY_CODES.index(code))
    return frozenset(indexes)


def is_work_day(day: date, work_days: frozenset[int]) -> bool:
    return day.weekday() in work_days


def iter_days(start: date, end: date) -> Iterator[date]:
    cursor = start
    while cursor <= end:
        yield cursor
        cursor += timedelta(days=1)


def count_work_days(
    start: date,
    end: date,
    work_days: frozenset[int],
    excluded: Iterable[date] = (),
) -> int:
    excluded_days = set(excluded)
    return sum(
        1
        for day in iter_days(start, end)
        if is_work_day(day, work_days) and day not in excluded_days
    )


def format_hhmm(value: time | None, default: str) -> str:
    if value is None:
        return default
    return value.strftime("%H:%M")


def parse_hhmm(value: str) -> time:
    hour_text, _, minute_text = value.partition(":")
    return time(int(hour_text), int(minute_text or 0))
