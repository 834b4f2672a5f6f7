"""Task visibility: which tasks a viewer may pick for timing.

Pure functions over a task collection. Rules, in order:
terminal tasks are hidden; global tasks are shown to everyone; tasks
assigned to the viewer are shown; unassigned tasks of a team the viewer
belongs to are shown; everything else is hidden.

The admin task-management view is a separate, wider listing.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.data.models import Task, Viewer

logger = logging.getLogger(__name__)

TEAM_PREFIX = "Team: "
OTHER_LABEL = "Other"


def _global_assignee(global_assignee: str | None) -> str:
    if global_assignee is None:
        from src.config import settings
        return settings.GLOBAL_TASK_ASSIGNEE
    return global_assignee


def _same_email(a: str | None, b: str | None) -> bool:
    return bool(a) and bool(b) and a.strip().lower() == b.strip().lower()


def is_task_visible(task: Task, viewer: Viewer, global_assignee: str | None = None) -> bool:
    """Apply the visibility rules to one task."""
    if task.state is not None and task.state.is_terminal:
        return False
    if task.assignee_email == _global_assignee(global_assignee):
        return True
    if _same_email(task.assignee_email, viewer.email):
        return True
    if task.assignee_email is None and task.team_id and task.team_id in viewer.team_ids:
        return True
    return False


def visible_tasks(
    tasks: list[Task], viewer: Viewer, global_assignee: str | None = None,
) -> list[Task]:
    """Tasks the viewer may select for timing, in input order."""
    sentinel = _global_assignee(global_assignee)
    result = [t for t in tasks if is_task_visible(t, viewer, sentinel)]
    logger.debug(
        "Visible tasks for %s: %d of %d", viewer.email, len(result), len(tasks),
    )
    return result


def admin_tasks(tasks: list[Task], viewer: Viewer) -> list[Task]:
    """Administrative view: every task, including unassigned and finished ones."""
    if not viewer.is_admin:
        raise PermissionError("Only admins can see the full task list")
    return list(tasks)


def team_label(task: Task, global_assignee: str | None = None) -> str:
    """Group label for a task in the picker."""
    if not task.team_id and task.assignee_email == _global_assignee(global_assignee):
        return task.identifier or OTHER_LABEL
    if task.team_id:
        key = (task.identifier or "").split("-")[0] or "Unknown"
        return f"{TEAM_PREFIX}{key}"
    return OTHER_LABEL


def group_by_team(
    tasks: list[Task], global_assignee: str | None = None,
) -> list[tuple[str, list[Task]]]:
    """Group tasks by label; team groups first, each part sorted alphabetically."""
    sentinel = _global_assignee(global_assignee)
    groups: dict[str, list[Task]] = {}
    for task in tasks:
        groups.setdefault(team_label(task, sentinel), []).append(task)

    def _order(label: str) -> tuple[int, str]:
        return (0 if label.startswith(TEAM_PREFIX) else 1, label.casefold())

    return [(label, groups[label]) for label in sorted(groups, key=_order)]


def selectable_groups(
    tasks: list[Task], viewer: Viewer, global_assignee: str | None = None,
) -> list[tuple[str, list[Task]]]:
    """visible_tasks() grouped for the task picker."""
    sentinel = _global_assignee(global_assignee)
    return group_by_team(visible_tasks(tasks, viewer, sentinel), sentinel)
