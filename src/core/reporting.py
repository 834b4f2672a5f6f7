"""Reporting-day arithmetic.

Every place that needs "which local day does this instant belong to"
(session date, midnight crossover, statistics, ledger sheet) goes through
`reporting_date` so the subsystems never disagree.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from src.config import DEFAULT_TIMEZONE, SUPPORTED_TIMEZONES

_DAY_END = time(23, 59, 59, 999000)


def _zone(tz_name: str | None) -> ZoneInfo:
    return ZoneInfo(tz_name or DEFAULT_TIMEZONE)


def is_supported_timezone(tz_name: str) -> bool:
    return tz_name in SUPPORTED_TIMEZONES


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(instant: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant


def reporting_date(instant: datetime, tz_name: str | None = None) -> date:
    """Return the calendar date `instant` falls on in the reporting timezone."""
    return ensure_aware(instant).astimezone(_zone(tz_name)).date()


def day_end(day: date, tz_name: str | None = None) -> datetime:
    """23:59:59.999 of `day` in the reporting timezone, as a UTC instant."""
    local = datetime.combine(day, _DAY_END, tzinfo=_zone(tz_name))
    return local.astimezone(timezone.utc)


def day_start(day: date, tz_name: str | None = None) -> datetime:
    """00:00:00.000 of `day` in the reporting timezone, as a UTC instant."""
    local = datetime.combine(day, time(0, 0), tzinfo=_zone(tz_name))
    return local.astimezone(timezone.utc)


def crossover_bounds(start: datetime, tz_name: str | None = None) -> tuple[datetime, datetime]:
    """Return (end of start's day, start of the following day)."""
    start_day = reporting_date(start, tz_name)
    return day_end(start_day, tz_name), day_start(start_day + timedelta(days=1), tz_name)


def month_sheet_name(entry_date: date) -> str:
    """Stable per-month sheet label, e.g. "2025年1月"."""
    return f"{entry_date.year}年{entry_date.month}月"


def format_sheet_date(instant: datetime, tz_name: str | None = None) -> str:
    return ensure_aware(instant).astimezone(_zone(tz_name)).strftime("%Y/%m/%d")


def format_sheet_datetime(instant: datetime, tz_name: str | None = None) -> str:
    return ensure_aware(instant).astimezone(_zone(tz_name)).strftime("%Y/%m/%d %H:%M:%S")


def format_elapsed(seconds: int) -> str:
    """HH:MM:SS for a non-negative number of seconds."""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def parse_instant(value: str) -> datetime:
    """Parse an ISO-8601 string (a trailing "Z" is accepted) into an aware datetime."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return ensure_aware(datetime.fromisoformat(value))


def to_iso(instant: datetime) -> str:
    return ensure_aware(instant).astimezone(timezone.utc).isoformat(timespec="milliseconds")
