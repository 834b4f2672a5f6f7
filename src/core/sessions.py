"""
DayLog — Per-user sessions.

Builds and caches one TimeEntryStore + TimerSessionController per user,
and answers the lookups the ledger sync worker needs (task, team and
owner names for a row).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from src.core.entry_store import TimeEntryStore
from src.core.sync_worker import RowContext
from src.core.timer import TimerSessionController
from src.data.local_store import LocalEntryStore
from src.data.models import Viewer

if TYPE_CHECKING:
    from src.core.sync_worker import LedgerSyncWorker
    from src.data.db import TaskDB, TeamDB, UserDB
    from src.data.models import Task, TimeEntry, UserProfile
    from src.ports.entry_port import EntryBackendPort
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


@dataclass
class UserSession:
    user_id: int
    store: TimeEntryStore
    timer: TimerSessionController


class SessionRegistry:
    """Lazily creates a session per Telegram user and keeps it for the process lifetime."""

    def __init__(
        self,
        backend: EntryBackendPort,
        task_db: TaskDB,
        team_db: TeamDB,
        user_db: UserDB,
        notifier: NotificationPort | None = None,
        worker: LedgerSyncWorker | None = None,
        local_store_dir: str | None = None,
    ) -> None:
        self._backend = backend
        self.task_db = task_db
        self.team_db = team_db
        self.user_db = user_db
        self._notifier = notifier
        self._worker = worker
        self._local_store_dir = local_store_dir
        self._sessions: dict[int, UserSession] = {}

    @property
    def sessions(self) -> list[UserSession]:
        return list(self._sessions.values())

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def profile(self, user_id: int) -> UserProfile:
        """Return the user's profile, creating it (and the admin flag) on first contact."""
        from src.config import settings

        existing = self.user_db.get_user(str(user_id))
        if existing is not None:
            return existing
        profile = self.user_db.get_or_create(str(user_id))
        if user_id in settings.ADMIN_USER_IDS:
            self.user_db.set_admin(str(user_id), True)
            profile.is_admin = True
        logger.info("Registered user %s (admin=%s)", user_id, profile.is_admin)
        return profile

    def timezone_for(self, user_id: int) -> str:
        from src.config import settings
        return self.profile(user_id).timezone or settings.TIMEZONE

    def viewer_for(self, user_id: int) -> Viewer:
        profile = self.profile(user_id)
        teams = self.team_db.list_teams_for_user(profile.email) if profile.email else []
        return Viewer(
            email=profile.email,
            team_ids={t.id for t in teams},
            is_admin=profile.is_admin,
        )

    def task_name(self, task_id: str) -> str:
        task = self.task_db.get_task(task_id)
        return task.name if task is not None else task_id

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def get(self, user_id: int) -> UserSession:
        session = self._sessions.get(user_id)
        if session is not None:
            return session

        def _local_backend() -> LocalEntryStore:
            return LocalEntryStore(f"user-{user_id}", base_dir=self._local_store_dir)

        store = TimeEntryStore(
            user_id=str(user_id),
            backend=self._backend,
            local_backend_factory=_local_backend,
            publish=self._worker.publish if self._worker is not None else None,
            timezone=self.timezone_for(user_id),
        )
        await store.load()
        timer = TimerSessionController(
            store,
            display_name=lambda: self.profile(user_id).display_name,
            notifier=self._notifier,
            chat_id=user_id,
            task_name=self.task_name,
        )
        session = UserSession(user_id=user_id, store=store, timer=timer)
        self._sessions[user_id] = session
        return session

    def set_timezone(self, user_id: int, tz_name: str) -> None:
        self.user_db.set_timezone(str(user_id), tz_name)
        session = self._sessions.get(user_id)
        if session is not None:
            session.store.timezone = tz_name

    async def restore_all(self, now: datetime | None = None) -> int:
        """Load every registered user and adopt any timer left running."""
        restored = 0
        for profile in self.user_db.list_users():
            try:
                session = await self.get(int(profile.user_id))
                if await session.timer.restore(now) is not None:
                    restored += 1
            except Exception as exc:
                logger.error("Failed to restore session for %s: %s", profile.user_id, exc)
        logger.info("Restored %d running timer(s)", restored)
        return restored

    async def tick_all(self, now: datetime | None = None) -> None:
        for session in self.sessions:
            try:
                await session.timer.tick(now)
            except Exception as exc:
                logger.error("Timer tick failed for %s: %s", session.user_id, exc)

    # ------------------------------------------------------------------
    # Ledger row context
    # ------------------------------------------------------------------

    def resolve_context(self, entry: TimeEntry) -> RowContext:
        task: Task | None = self.task_db.get_task(entry.task_id)
        team_name = None
        if task is not None and task.team_id:
            team = self.team_db.get_team(task.team_id)
            team_name = team.name if team is not None else None
        owner = self.user_db.get_user(entry.owner_user_id)
        assignee_name = owner.display_name if owner is not None else None
        return RowContext(task=task, team_name=team_name, assignee_name=assignee_name)
