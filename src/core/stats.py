"""Per-task time totals for a reporting period."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import TYPE_CHECKING

from src.core.reporting import reporting_date

if TYPE_CHECKING:
    from src.data.models import Task, TimeEntry

TOP_N = 8
OTHERS_ID = "others"
OTHERS_COLOR = "#9ca3af"


class Period(Enum):
    TODAY = "today"
    YESTERDAY = "yesterday"
    THIS_WEEK = "this_week"
    LAST_WEEK = "last_week"
    THIS_MONTH = "this_month"
    LAST_MONTH = "last_month"


@dataclass
class TaskTime:
    task_id: str
    task_name: str
    color: str
    total_seconds: float

    @property
    def formatted(self) -> str:
        return format_duration(self.total_seconds)


def format_duration(total_seconds: float) -> str:
    """"2h 5m", or "5m" under an hour."""
    hours = int(total_seconds // 3600)
    minutes = int((total_seconds % 3600) // 60)
    return f"{hours}h {minutes}m" if hours > 0 else f"{minutes}m"


def period_range(period: Period, today: date) -> tuple[date, date]:
    """Inclusive first and last reporting day of `period`. Weeks start on Sunday."""
    if period is Period.TODAY:
        return today, today
    if period is Period.YESTERDAY:
        day = today - timedelta(days=1)
        return day, day

    week_start = today - timedelta(days=(today.weekday() + 1) % 7)
    if period is Period.THIS_WEEK:
        return week_start, today
    if period is Period.LAST_WEEK:
        return week_start - timedelta(days=7), week_start - timedelta(days=1)

    month_start = today.replace(day=1)
    if period is Period.THIS_MONTH:
        return month_start, today
    last_month_end = month_start - timedelta(days=1)
    return last_month_end.replace(day=1), last_month_end


def aggregate_task_time(
    entries: list[TimeEntry],
    tasks: list[Task],
    period: Period,
    tz_name: str,
    today: date,
) -> list[TaskTime]:
    """Sum completed durations per task, largest first; fold the tail into "Others"."""
    first, last = period_range(period, today)
    totals: dict[str, float] = {}
    for entry in entries:
        if entry.is_running:
            continue
        day = reporting_date(entry.start_time, tz_name)
        if not first <= day <= last:
            continue
        seconds = (entry.end_time - entry.start_time).total_seconds()
        totals[entry.task_id] = totals.get(entry.task_id, 0.0) + seconds

    by_id = {t.id: t for t in tasks}
    result = [
        TaskTime(task_id, by_id[task_id].name, by_id[task_id].color, seconds)
        for task_id, seconds in totals.items()
        if task_id in by_id
    ]
    result.sort(key=lambda t: t.total_seconds, reverse=True)

    if len(result) > TOP_N:
        others = sum(t.total_seconds for t in result[TOP_N:])
        result = result[:TOP_N] + [TaskTime(OTHERS_ID, "Others", OTHERS_COLOR, others)]
    return result
