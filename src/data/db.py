"""
DayLog — SQLite storage.

TimeEntryDB is the system of record for time entries. TaskDB, TeamDB and
UserDB hold the read-mostly records synced from the issue tracker and the
approval workflow.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from pathlib import Path
from typing import Any

from src.core.reporting import parse_instant, to_iso
from src.data.models import Task, TaskState, Team, TimeEntry, UserProfile

logger = logging.getLogger(__name__)

_ENTRY_COLUMNS = {
    "task_id": "task_id",
    "start_time": "start_time",
    "end_time": "end_time",
    "comment": "comment",
    "date": "date",
}


class _SQLiteDB:
    """Shared connection handling for the DayLog tables."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        raise NotImplementedError


class TimeEntryDB(_SQLiteDB):
    """SQLite-backed storage for time entries."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS time_entries (
                    id          TEXT PRIMARY KEY,
                    task_id     TEXT NOT NULL,
                    user_id     TEXT NOT NULL,
                    start_time  TEXT NOT NULL,
                    end_time    TEXT,
                    comment     TEXT NOT NULL DEFAULT '',
                    date        TEXT NOT NULL,
                    created_at  TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_time_entries_user "
                "ON time_entries (user_id, start_time)"
            )
        logger.debug("Time entries table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> TimeEntry:
        return TimeEntry(
            id=row["id"],
            task_id=row["task_id"],
            owner_user_id=row["user_id"],
            start_time=parse_instant(row["start_time"]),
            end_time=parse_instant(row["end_time"]) if row["end_time"] else None,
            comment=row["comment"] or "",
            date=row["date"],
        )

    def insert_entry(self, entry: TimeEntry) -> TimeEntry:
        """Insert an entry under a freshly assigned id and return the stored copy."""
        entry_id = uuid.uuid4().hex
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO time_entries
                    (id, task_id, user_id, start_time, end_time, comment, date)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry_id,
                    entry.task_id,
                    entry.owner_user_id,
                    to_iso(entry.start_time),
                    to_iso(entry.end_time) if entry.end_time else None,
                    entry.comment,
                    entry.date,
                ),
            )
        logger.info("Time entry %s stored for user %s", entry_id, entry.owner_user_id)
        return entry.copy(id=entry_id)

    def update_entry(self, entry_id: str, fields: dict[str, Any]) -> bool:
        """Update the given columns. Returns False when the id is unknown."""
        assignments: list[str] = []
        params: list = []
        for key, value in fields.items():
            column = _ENTRY_COLUMNS.get(key)
            if column is None:
                raise ValueError(f"Unknown time entry field: {key}")
            if key in ("start_time", "end_time") and value is not None:
                value = to_iso(value)
            assignments.append(f"{column} = ?")
            params.append(value)
        if not assignments:
            return True

        params.append(entry_id)
        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE time_entries SET {', '.join(assignments)} WHERE id = ?",
                params,
            )
        return cursor.rowcount > 0

    def delete_entry(self, entry_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM time_entries WHERE id = ?", (entry_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Time entry %s deleted", entry_id)
        return deleted

    def get_entry(self, entry_id: str) -> TimeEntry | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM time_entries WHERE id = ?", (entry_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_entry(row)

    def list_for_user(self, user_id: str) -> list[TimeEntry]:
        """Return the user's entries, newest start first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM time_entries WHERE user_id = ? ORDER BY start_time DESC",
                (user_id,),
            ).fetchall()
        return [self._row_to_entry(r) for r in rows]


class TaskDB(_SQLiteDB):
    """Task records mirrored from the issue tracker."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id              TEXT PRIMARY KEY,
                    name            TEXT NOT NULL,
                    color           TEXT NOT NULL DEFAULT '#3b82f6',
                    assignee_email  TEXT,
                    assignee_name   TEXT,
                    team_id         TEXT,
                    project_id      TEXT,
                    project_name    TEXT,
                    issue_id        TEXT,
                    identifier      TEXT,
                    state           TEXT,
                    priority        INTEGER NOT NULL DEFAULT 0,
                    url             TEXT,
                    created_at      TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
            """)
        logger.debug("Tasks table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=row["id"],
            name=row["name"],
            color=row["color"],
            assignee_email=row["assignee_email"],
            assignee_name=row["assignee_name"],
            team_id=row["team_id"],
            project_id=row["project_id"],
            project_name=row["project_name"],
            issue_id=row["issue_id"],
            identifier=row["identifier"],
            state=TaskState(row["state"]) if row["state"] else None,
            priority=row["priority"],
            url=row["url"],
        )

    def upsert_task(self, task: Task) -> Task:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO tasks
                    (id, name, color, assignee_email, assignee_name, team_id,
                     project_id, project_name, issue_id, identifier, state, priority, url)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    color = excluded.color,
                    assignee_email = excluded.assignee_email,
                    assignee_name = excluded.assignee_name,
                    team_id = excluded.team_id,
                    project_id = excluded.project_id,
                    project_name = excluded.project_name,
                    issue_id = excluded.issue_id,
                    identifier = excluded.identifier,
                    state = excluded.state,
                    priority = excluded.priority,
                    url = excluded.url
                """,
                (
                    task.id, task.name, task.color, task.assignee_email, task.assignee_name,
                    task.team_id, task.project_id, task.project_name, task.issue_id,
                    task.identifier, task.state.value if task.state else None,
                    task.priority, task.url,
                ),
            )
        return task

    def get_task(self, task_id: str) -> Task | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def list_tasks(self) -> list[Task]:
        """Return every task, newest first."""
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM tasks ORDER BY created_at DESC").fetchall()
        return [self._row_to_task(r) for r in rows]


class TeamDB(_SQLiteDB):
    """Teams and their member emails."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS teams (
                    id    TEXT PRIMARY KEY,
                    name  TEXT NOT NULL,
                    key   TEXT NOT NULL DEFAULT ''
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS team_members (
                    team_id  TEXT NOT NULL,
                    email    TEXT NOT NULL,
                    PRIMARY KEY (team_id, email)
                )
            """)
        logger.debug("Teams tables initialized at %s", self._db_path)

    def add_team(self, team: Team) -> Team:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO teams (id, name, key) VALUES (?, ?, ?)",
                (team.id, team.name, team.key),
            )
        return team

    def add_member(self, team_id: str, email: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO team_members (team_id, email) VALUES (?, ?)",
                (team_id, email.strip().lower()),
            )

    def get_team(self, team_id: str) -> Team | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM teams WHERE id = ?", (team_id,)).fetchone()
        if row is None:
            return None
        return Team(id=row["id"], name=row["name"], key=row["key"])

    def list_teams_for_user(self, email: str) -> list[Team]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT t.* FROM teams t
                JOIN team_members m ON m.team_id = t.id
                WHERE m.email = ?
                ORDER BY t.name
                """,
                (email.strip().lower(),),
            ).fetchall()
        return [Team(id=r["id"], name=r["name"], key=r["key"]) for r in rows]


class UserDB(_SQLiteDB):
    """Registered users and their DayLog preferences."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    user_id           TEXT PRIMARY KEY,
                    email             TEXT NOT NULL DEFAULT '',
                    display_name      TEXT NOT NULL DEFAULT '',
                    is_admin          INTEGER NOT NULL DEFAULT 0,
                    timezone          TEXT NOT NULL DEFAULT '',
                    selected_task_id  TEXT
                )
            """)
        logger.debug("Users table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> UserProfile:
        return UserProfile(
            user_id=row["user_id"],
            email=row["email"],
            display_name=row["display_name"],
            is_admin=bool(row["is_admin"]),
            timezone=row["timezone"],
            selected_task_id=row["selected_task_id"],
        )

    def get_or_create(self, user_id: str) -> UserProfile:
        with self._connect() as conn:
            conn.execute("INSERT OR IGNORE INTO users (user_id) VALUES (?)", (user_id,))
            row = conn.execute("SELECT * FROM users WHERE user_id = ?", (user_id,)).fetchone()
        return self._row_to_user(row)

    def get_user(self, user_id: str) -> UserProfile | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE user_id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def _set(self, user_id: str, column: str, value: Any) -> None:
        with self._connect() as conn:
            conn.execute("INSERT OR IGNORE INTO users (user_id) VALUES (?)", (user_id,))
            conn.execute(f"UPDATE users SET {column} = ? WHERE user_id = ?", (value, user_id))

    def set_display_name(self, user_id: str, name: str) -> None:
        self._set(user_id, "display_name", name.strip())
        logger.info("Display name set for user %s", user_id)

    def set_email(self, user_id: str, email: str) -> None:
        self._set(user_id, "email", email.strip().lower())
        logger.info("Email linked for user %s", user_id)

    def set_timezone(self, user_id: str, tz_name: str) -> None:
        self._set(user_id, "timezone", tz_name)

    def set_selected_task(self, user_id: str, task_id: str | None) -> None:
        self._set(user_id, "selected_task_id", task_id)

    def set_admin(self, user_id: str, is_admin: bool) -> None:
        self._set(user_id, "is_admin", int(is_admin))

    def list_users(self) -> list[UserProfile]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY user_id").fetchall()
        return [self._row_to_user(r) for r in rows]
