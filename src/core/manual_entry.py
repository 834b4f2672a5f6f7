"""Manual time entries: validation and midnight splitting.

A manual record that spans two reporting days becomes two entries, the
same way a running timer is split at midnight.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from src.core.errors import ValidationError
from src.core.reporting import day_end, day_start, ensure_aware, reporting_date
from src.data.models import TimeEntry


def validate_time_range(start: datetime | None, end: datetime | None, now: datetime) -> None:
    """Raise ValidationError for missing, future-dated or inverted times."""
    if start is None or end is None:
        raise ValidationError("Enter both a start and an end time")
    start, end, now = ensure_aware(start), ensure_aware(end), ensure_aware(now)
    if end > now:
        raise ValidationError("End time cannot be in the future")
    if start > now:
        raise ValidationError("Start time cannot be in the future")
    if start >= end:
        raise ValidationError("End time must be after start time")


def build_manual_entries(
    task_id: str | None,
    owner_user_id: str,
    start: datetime | None,
    end: datetime | None,
    comment: str,
    tz_name: str,
    now: datetime,
) -> list[TimeEntry]:
    """Validate a manual record and return the entries to persist (one or two)."""
    if not task_id:
        raise ValidationError("Select a task")
    validate_time_range(start, end, now)
    start, end = ensure_aware(start), ensure_aware(end)

    start_day = reporting_date(start, tz_name)
    end_day = reporting_date(end, tz_name)

    if start_day == end_day:
        return [
            TimeEntry(
                id="", task_id=task_id, owner_user_id=owner_user_id,
                start_time=start, end_time=end, comment=comment,
                date=start_day.isoformat(),
            )
        ]

    if end_day - start_day > timedelta(days=1):
        raise ValidationError("A manual entry cannot span more than two days")

    first = TimeEntry(
        id="", task_id=task_id, owner_user_id=owner_user_id,
        start_time=start, end_time=day_end(start_day, tz_name), comment=comment,
        date=start_day.isoformat(),
    )
    if end <= day_start(end_day, tz_name):
        # Ends exactly at midnight: nothing to attribute to the next day
        return [first]

    return [
        first,
        TimeEntry(
            id="", task_id=task_id, owner_user_id=owner_user_id,
            start_time=day_start(end_day, tz_name), end_time=end, comment=comment,
            date=end_day.isoformat(),
        ),
    ]
