"""
DayLog — Time Entry Store.

The single read/write gateway to a user's time entries. Every mutation is
applied to the in-memory list first, then persisted; a durable failure
restores the previous state. Committed changes are published as events for
the ledger sync worker, so a spreadsheet problem can never fail or roll
back a store mutation.

If the durable backend is unreachable on the initial load, the store
switches to local-only storage for the rest of the session.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from src.core.errors import NotFoundError, ValidationError
from src.core.manual_entry import build_manual_entries, validate_time_range
from src.core.optimistic import OptimisticMutation
from src.core.reporting import reporting_date
from src.core.sync_worker import EntryCommitted, EntryDeleted

if TYPE_CHECKING:
    from src.core.sync_worker import SyncEvent
    from src.data.models import TimeEntry
    from src.ports.entry_port import EntryBackendPort

logger = logging.getLogger(__name__)

PROVISIONAL_PREFIX = "temp-"


def _provisional_id() -> str:
    return f"{PROVISIONAL_PREFIX}{uuid.uuid4().hex[:12]}"


class TimeEntryStore:
    """Optimistic, rollback-safe cache over an EntryBackendPort."""

    def __init__(
        self,
        user_id: str,
        backend: EntryBackendPort,
        local_backend_factory: Callable[[], EntryBackendPort] | None = None,
        publish: Callable[[SyncEvent], None] | None = None,
        timezone: str | None = None,
    ) -> None:
        if timezone is None:
            from src.config import settings
            timezone = settings.TIMEZONE

        self.user_id = user_id
        self.timezone = timezone
        self._backend = backend
        self._local_backend_factory = local_backend_factory
        self._publish = publish
        self._entries: list[TimeEntry] = []
        self._local_mode = False
        self._background: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def entries(self) -> list[TimeEntry]:
        """Snapshot of the in-memory entries, newest first."""
        return list(self._entries)

    @property
    def is_local_mode(self) -> bool:
        return self._local_mode

    def get(self, entry_id: str) -> TimeEntry | None:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        return None

    def active_entry(self) -> TimeEntry | None:
        for entry in self._entries:
            if entry.is_running:
                return entry
        return None

    def _index_of(self, entry_id: str) -> int:
        for i, entry in enumerate(self._entries):
            if entry.id == entry_id:
                return i
        return -1

    async def load(self) -> list[TimeEntry]:
        """Initial load; falls back to local-only storage if the backend is down."""
        try:
            entries = await self._backend.list_entries_for_user(self.user_id)
        except Exception as exc:
            if self._local_backend_factory is None:
                raise
            logger.warning(
                "Entry backend unavailable for %s (%s), switching to local storage",
                self.user_id, exc,
            )
            self._backend = self._local_backend_factory()
            self._local_mode = True
            entries = await self._backend.list_entries_for_user(self.user_id)

        self._entries = sorted(entries, key=lambda e: e.start_time, reverse=True)
        logger.info(
            "Loaded %d entries for %s (%s mode)",
            len(self._entries), self.user_id, "local" if self._local_mode else "durable",
        )
        return self.entries

    # ------------------------------------------------------------------
    # Events and background work
    # ------------------------------------------------------------------

    def _emit(self, event: SyncEvent) -> None:
        if self._publish is None or self._local_mode:
            return
        try:
            self._publish(event)
        except Exception as exc:
            logger.error("Failed to publish %s: %s", type(event).__name__, exc)

    def _in_background(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def flush(self) -> None:
        """Wait until every background durable write has settled."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create(self, entry: TimeEntry) -> TimeEntry:
        """Show the entry immediately under a provisional id, then persist.

        Returns the persisted entry carrying the durable id. On failure the
        provisional entry is removed and the error propagates.
        """
        if entry.is_running and self.active_entry() is not None:
            raise ValidationError("A timer is already running")

        provisional = entry.copy(id=_provisional_id(), owner_user_id=self.user_id)

        def _apply() -> None:
            self._entries.insert(0, provisional)

        def _restore(_: None) -> None:
            self._entries = [e for e in self._entries if e.id != provisional.id]

        def _commit(saved: TimeEntry) -> None:
            index = self._index_of(provisional.id)
            if index != -1:
                # Keep any local edits made while the write was in flight
                self._entries[index] = self._entries[index].copy(id=saved.id)

        mutation = OptimisticMutation(
            label=f"create entry for task {entry.task_id}",
            snapshot=lambda: None,
            apply=_apply,
            persist=lambda: self._backend.create_entry(provisional),
            restore=_restore,
            commit=_commit,
        )
        saved = await mutation.run()
        logger.info("Entry saved with id %s", saved.id)
        if not saved.is_running:
            self._emit(EntryCommitted(saved, self.timezone))
        return saved

    async def update(self, entry_id: str, **fields: Any) -> None:
        """Apply `fields` locally now; persist in the background.

        A durable failure restores the full prior entry. Success publishes
        an EntryCommitted event for the ledger.
        """
        if self._index_of(entry_id) == -1:
            raise NotFoundError(f"Time entry {entry_id} not found")

        def _snapshot() -> TimeEntry:
            return self._entries[self._index_of(entry_id)]

        def _apply() -> None:
            index = self._index_of(entry_id)
            self._entries[index] = self._entries[index].copy(**fields)

        def _restore(previous: TimeEntry) -> None:
            index = self._index_of(entry_id)
            if index != -1:
                self._entries[index] = previous

        def _commit(_: None) -> None:
            current = self.get(entry_id)
            if current is not None:
                self._emit(EntryCommitted(current, self.timezone))

        mutation = OptimisticMutation(
            label=f"update entry {entry_id}",
            snapshot=_snapshot,
            apply=_apply,
            persist=lambda: self._backend.update_entry(entry_id, dict(fields)),
            restore=_restore,
            commit=_commit,
        )
        previous = mutation.begin()
        self._in_background(mutation.settle(previous, reraise=False))

    async def delete(self, entry_id: str) -> None:
        """Remove locally now; persist in the background; re-insert on failure.

        The ledger row is removed best-effort, keyed by id and start time.
        """
        index = self._index_of(entry_id)
        if index == -1:
            raise NotFoundError(f"Time entry {entry_id} not found")

        def _snapshot() -> tuple[int, TimeEntry]:
            return index, self._entries[index]

        def _apply() -> None:
            del self._entries[index]

        def _restore(previous: tuple[int, TimeEntry]) -> None:
            position, entry = previous
            if self._index_of(entry.id) == -1:
                self._entries.insert(min(position, len(self._entries)), entry)

        mutation = OptimisticMutation(
            label=f"delete entry {entry_id}",
            snapshot=_snapshot,
            apply=_apply,
            persist=lambda: self._backend.delete_entry(entry_id),
            restore=_restore,
        )
        _, removed = previous = mutation.begin()
        self._in_background(mutation.settle(previous, reraise=False))
        self._emit(EntryDeleted(entry_id, removed.start_time, self.timezone))

    # ------------------------------------------------------------------
    # Dialog-level operations
    # ------------------------------------------------------------------

    async def add_manual(
        self,
        task_id: str | None,
        start: datetime | None,
        end: datetime | None,
        comment: str,
        now: datetime,
    ) -> list[TimeEntry]:
        """Validate, split at midnight if needed, and persist a manual record."""
        drafts = build_manual_entries(
            task_id, self.user_id, start, end, comment, self.timezone, now,
        )
        saved: list[TimeEntry] = []
        for draft in drafts:
            saved.append(await self.create(draft))
        return saved

    async def edit(
        self,
        entry_id: str,
        start: datetime,
        end: datetime | None,
        comment: str,
        now: datetime,
    ) -> None:
        """Edit an entry's times and comment after validating the range.

        The reporting date follows the new start time.
        """
        if end is not None:
            validate_time_range(start, end, now)
        await self.update(
            entry_id,
            start_time=start,
            end_time=end,
            comment=comment,
            date=reporting_date(start, self.timezone).isoformat(),
        )
