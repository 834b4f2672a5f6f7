"""
DayLog — Data Models.

Time entries are the system of record; tasks, teams and user profiles are
read-mostly records owned by the issue tracker and the approval workflow.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum


class TaskState(Enum):
    """Lifecycle classification of a tracker issue."""

    BACKLOG = "backlog"
    UNSTARTED = "unstarted"
    STARTED = "started"
    COMPLETED = "completed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.COMPLETED, TaskState.CANCELED)


@dataclass
class TimeEntry:
    """One timer session or manual record.

    `end_time` is None while the session is running. At most one entry per
    owner may be running at any time.
    """

    id: str
    task_id: str
    owner_user_id: str
    start_time: datetime
    end_time: datetime | None = None
    comment: str = ""
    date: str = ""  # reporting date, YYYY-MM-DD

    @property
    def is_running(self) -> bool:
        return self.end_time is None

    def copy(self, **changes) -> TimeEntry:
        return replace(self, **changes)


@dataclass
class Task:
    """A timeable task synced from the issue tracker (or created by an admin)."""

    id: str
    name: str
    color: str = "#3b82f6"
    assignee_email: str | None = None
    assignee_name: str | None = None
    team_id: str | None = None
    project_id: str | None = None
    project_name: str | None = None
    issue_id: str | None = None
    identifier: str | None = None  # e.g. "ENG-42", or a free-text label for global tasks
    state: TaskState | None = None
    priority: int = 0
    url: str | None = None


@dataclass
class Team:
    id: str
    name: str
    key: str = ""


@dataclass
class UserProfile:
    """A registered user: identity, display name and reporting preferences."""

    user_id: str
    email: str = ""
    display_name: str = ""
    is_admin: bool = False
    timezone: str = ""
    selected_task_id: str | None = None


@dataclass
class Viewer:
    """The identity a visibility decision is made for."""

    email: str
    team_ids: set[str] = field(default_factory=set)
    is_admin: bool = False


@dataclass
class SheetRowData:
    """The ten ledger columns for one completed entry."""

    time_entry_id: str
    date: str
    team_name: str | None
    project_name: str | None
    issue_name: str | None
    comment: str
    working_hours: float
    assignee_name: str | None
    start_time: str
    end_time: str

    def to_row(self) -> list[str]:
        return [
            self.time_entry_id,
            self.date,
            self.team_name or "",
            self.project_name or "",
            self.issue_name or "",
            self.comment,
            f"{self.working_hours:.2f}",
            self.assignee_name or "",
            self.start_time,
            self.end_time,
        ]
