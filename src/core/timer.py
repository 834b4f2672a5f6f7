"""
DayLog — Timer session controller.

Owns the "is a timer running" state for one user:

    Idle -> Running -> AwaitingComment -> Saving -> Idle
                 ^           |
                 +-- cancel -+

A running session is never persisted across a reporting-day boundary: the
tick that first sees a new local day closes the entry at 23:59:59.999 and
continues the session in a fresh entry starting at 00:00:00.000.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Callable

from src.core.errors import NameRequiredError, ValidationError
from src.core.reporting import (
    crossover_bounds,
    ensure_aware,
    format_elapsed,
    reporting_date,
    utc_now,
)
from src.data.models import TimeEntry

if TYPE_CHECKING:
    from src.core.entry_store import TimeEntryStore
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

CONTIGUITY_TOLERANCE = timedelta(seconds=1)


class TimerState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    AWAITING_COMMENT = "awaiting_comment"
    SAVING = "saving"


class TimerSessionController:
    """Per-user timer state machine on top of a TimeEntryStore.

    Args:
        store: The user's entry store.
        display_name: Returns the user's current display name.
        notifier: Optional; receives start/stop/progress messages.
        chat_id: Where notifications go.
        task_name: Maps a task id to a human-readable name for messages.
        notification_interval: Seconds between progress messages, 0 disables.
    """

    def __init__(
        self,
        store: TimeEntryStore,
        display_name: Callable[[], str | None],
        notifier: NotificationPort | None = None,
        chat_id: int | None = None,
        task_name: Callable[[str], str] | None = None,
        notification_interval: int | None = None,
    ) -> None:
        if notification_interval is None:
            from src.config import settings
            notification_interval = settings.NOTIFICATION_INTERVAL_SECONDS

        self._store = store
        self._display_name = display_name
        self._notifier = notifier
        self._chat_id = chat_id
        self._task_name = task_name or (lambda task_id: task_id)
        self._interval = notification_interval

        self.state = TimerState.IDLE
        self.entry_id: str | None = None
        self.task_id: str | None = None
        self.start_time: datetime | None = None
        self.elapsed_seconds = 0
        self._progress_sent = 0
        self._crossing = False

    @property
    def timezone(self) -> str:
        return self._store.timezone

    @property
    def is_active(self) -> bool:
        return self.state is not TimerState.IDLE

    def elapsed_text(self) -> str:
        return format_elapsed(self.elapsed_seconds)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def _notify(self, text: str) -> None:
        if self._notifier is None or self._chat_id is None:
            return
        try:
            await self._notifier.send_message(self._chat_id, text)
        except Exception as exc:
            logger.warning("Failed to send timer notification to %s: %s", self._chat_id, exc)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def _adopt(self, entry: TimeEntry) -> None:
        self.state = TimerState.RUNNING
        self.entry_id = entry.id
        self.task_id = entry.task_id
        self.start_time = ensure_aware(entry.start_time)
        self.elapsed_seconds = 0
        self._progress_sent = 0

    def _reset(self) -> None:
        self.state = TimerState.IDLE
        self.entry_id = None
        self.task_id = None
        self.start_time = None
        self.elapsed_seconds = 0
        self._progress_sent = 0

    async def start(self, task_id: str | None, now: datetime | None = None) -> TimeEntry:
        """Start timing `task_id`. Raises ValidationError / NameRequiredError."""
        if self.state is not TimerState.IDLE:
            raise ValidationError("A timer is already running")
        if not task_id:
            raise ValidationError("Select a task before starting the timer")
        name = self._display_name()
        if not name or not name.strip():
            raise NameRequiredError("Set your display name before starting the timer")

        now = ensure_aware(now or utc_now())
        draft = TimeEntry(
            id="",
            task_id=task_id,
            owner_user_id=self._store.user_id,
            start_time=now,
            date=reporting_date(now, self.timezone).isoformat(),
        )
        saved = await self._store.create(draft)
        self._adopt(saved)
        logger.info("Timer started for %s on task %s (entry %s)", self._store.user_id, task_id, saved.id)
        await self._notify(f"⏱ Started {self._task_name(task_id)}")
        return saved

    async def restore(self, now: datetime | None = None) -> TimeEntry | None:
        """Adopt a running entry left over from a previous process, if any."""
        active = self._store.active_entry()
        if active is None:
            return None
        self._adopt(active)
        logger.info("Restored running entry %s for %s", active.id, self._store.user_id)
        await self.tick(now)
        return self._store.get(self.entry_id) if self.entry_id else None

    async def tick(self, now: datetime | None = None) -> None:
        """Recompute elapsed time; split the session if the local day changed."""
        if self.state is not TimerState.RUNNING or self._crossing:
            return
        now = ensure_aware(now or utc_now())

        while (
            self.state is TimerState.RUNNING
            and reporting_date(now, self.timezone) != reporting_date(self.start_time, self.timezone)
        ):
            if not await self._cross_midnight():
                return

        self.elapsed_seconds = max(0, int((now - self.start_time).total_seconds()))
        await self._maybe_send_progress()

    async def _maybe_send_progress(self) -> None:
        if self._interval <= 0:
            return
        reached = self.elapsed_seconds // self._interval
        if reached > self._progress_sent:
            self._progress_sent = reached
            await self._notify(
                f"⏳ {self._task_name(self.task_id)}: {self.elapsed_text()} so far"
            )

    async def _cross_midnight(self) -> bool:
        """Close the active entry at day end and continue in a new entry.

        Returns False when the continuation entry could not be created; the
        controller is then left without an active session and the error is
        logged.
        """
        self._crossing = True
        try:
            closed_at, reopened_at = crossover_bounds(self.start_time, self.timezone)
            current = self._store.get(self.entry_id)
            comment = current.comment if current is not None else ""
            logger.info(
                "Midnight crossover for entry %s: closing at %s", self.entry_id, closed_at,
            )
            # The store publishes the closed entry to the ledger once the update commits
            await self._store.update(self.entry_id, end_time=closed_at, comment=comment)

            draft = TimeEntry(
                id="",
                task_id=self.task_id,
                owner_user_id=self._store.user_id,
                start_time=reopened_at,
                comment=comment,
                date=reporting_date(reopened_at, self.timezone).isoformat(),
            )
            try:
                saved = await self._store.create(draft)
            except Exception as exc:
                logger.error(
                    "Midnight crossover could not start the next-day entry for task %s: %s",
                    self.task_id, exc,
                )
                self._reset()
                return False

            self._adopt(saved)
            return True
        finally:
            self._crossing = False

    # ------------------------------------------------------------------
    # Stop
    # ------------------------------------------------------------------

    def request_stop(self) -> None:
        if self.state is not TimerState.RUNNING:
            raise ValidationError("No timer is running")
        self.state = TimerState.AWAITING_COMMENT

    def cancel_stop(self) -> None:
        if self.state is TimerState.AWAITING_COMMENT:
            self.state = TimerState.RUNNING

    async def save(self, comment: str, now: datetime | None = None) -> TimeEntry | None:
        """Close the session with `comment` and backfill contiguous predecessors.

        A save while another save is in flight is ignored and returns None.
        """
        if self.state is TimerState.SAVING:
            logger.debug("Save already in progress for %s, ignoring", self._store.user_id)
            return None
        if self.state is not TimerState.AWAITING_COMMENT:
            raise ValidationError("Stop the timer before saving")

        self.state = TimerState.SAVING
        now = ensure_aware(now or utc_now())
        entry_id, task_id = self.entry_id, self.task_id
        try:
            # A stop on a new local day still splits at midnight first
            if reporting_date(now, self.timezone) != reporting_date(self.start_time, self.timezone):
                self.state = TimerState.RUNNING
                await self.tick(now)
                if self.state is not TimerState.RUNNING:
                    return None
                self.state = TimerState.SAVING
                entry_id = self.entry_id

            await self._store.update(entry_id, end_time=now, comment=comment)
            backfilled = await self._backfill_comment(entry_id, task_id, comment)
        except Exception:
            self.state = TimerState.AWAITING_COMMENT
            raise

        elapsed = format_elapsed(int((now - self.start_time).total_seconds()))
        logger.info(
            "Timer stopped for %s on task %s (%s, %d entries backfilled)",
            self._store.user_id, task_id, elapsed, len(backfilled),
        )
        self._reset()
        await self._notify(f"✅ Stopped {self._task_name(task_id)} after {elapsed}")
        return self._store.get(entry_id)

    async def _backfill_comment(self, entry_id: str, task_id: str, comment: str) -> list[str]:
        """Copy `comment` to every completed same-task entry contiguous with `entry_id`."""
        saved = self._store.get(entry_id)
        if saved is None:
            return []

        candidates = sorted(
            (
                e for e in self._store.entries
                if e.id != entry_id
                and e.task_id == task_id
                and e.owner_user_id == saved.owner_user_id
                and not e.is_running
            ),
            key=lambda e: e.end_time,
            reverse=True,
        )

        updated: list[str] = []
        boundary = ensure_aware(saved.start_time)
        for entry in candidates:
            end = ensure_aware(entry.end_time)
            if boundary < end - CONTIGUITY_TOLERANCE:
                # Ends after the boundary: newer than the chain we are walking
                continue
            if boundary - end > CONTIGUITY_TOLERANCE:
                break
            await self._store.update(entry.id, comment=comment)
            updated.append(entry.id)
            boundary = ensure_aware(entry.start_time)
        return updated
