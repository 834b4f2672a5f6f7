"""
DayLog — Ledger sync worker.

The store publishes an event after every durable commit; this worker
consumes them and mirrors the change into the spreadsheet ledger. Ledger
failures are logged and dropped here, so they can never reach the caller
that mutated the store.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Union

from src.core.reporting import (
    format_sheet_date,
    format_sheet_datetime,
    reporting_date,
)
from src.data.models import SheetRowData

if TYPE_CHECKING:
    from src.core.ledger import SpreadsheetLedger
    from src.data.models import Task, TimeEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntryCommitted:
    """A created or updated entry reached the durable store."""

    entry: TimeEntry
    timezone: str


@dataclass(frozen=True)
class EntryDeleted:
    """An entry was removed; its row should go too."""

    entry_id: str
    start_time: datetime
    timezone: str


SyncEvent = Union[EntryCommitted, EntryDeleted]


@dataclass
class RowContext:
    """Names the ledger row needs but the entry doesn't carry."""

    task: Task | None
    team_name: str | None
    assignee_name: str | None


def build_sheet_row(
    entry: TimeEntry,
    task: Task | None,
    team_name: str | None,
    assignee_name: str | None,
    tz_name: str,
    global_assignee: str,
) -> SheetRowData:
    """Build the ten ledger columns for a completed entry."""
    if entry.is_running:
        raise ValueError(f"Time entry {entry.id} is incomplete")

    project_name = task.project_name if task else None
    if task is not None and task.assignee_email == global_assignee and task.name:
        # Admin-created "other" tasks label themselves
        team_name = task.name
        project_name = task.name
    elif (
        task is not None
        and task.issue_id is None
        and task.team_id
        and task.assignee_email is None
        and not project_name
    ):
        project_name = task.identifier or task.name

    working_hours = (entry.end_time - entry.start_time).total_seconds() / 3600

    return SheetRowData(
        time_entry_id=entry.id,
        date=format_sheet_date(entry.start_time, tz_name),
        team_name=team_name,
        project_name=project_name,
        issue_name=(task.identifier or task.name) if task else None,
        comment=entry.comment or "",
        working_hours=working_hours,
        assignee_name=assignee_name,
        start_time=format_sheet_datetime(entry.start_time, tz_name),
        end_time=format_sheet_datetime(entry.end_time, tz_name),
    )


class LedgerSyncWorker:
    """Consumes store events and mirrors them into the ledger."""

    def __init__(
        self,
        ledger: SpreadsheetLedger,
        resolve_context: Callable[[TimeEntry], RowContext],
        global_assignee: str | None = None,
    ) -> None:
        if global_assignee is None:
            from src.config import settings
            global_assignee = settings.GLOBAL_TASK_ASSIGNEE

        self._ledger = ledger
        self._resolve_context = resolve_context
        self._global_assignee = global_assignee
        self._queue: asyncio.Queue[SyncEvent] = asyncio.Queue()
        self._inflight: set[asyncio.Task] = set()
        self._runner: asyncio.Task | None = None

    def publish(self, event: SyncEvent) -> None:
        """Enqueue an event. Never blocks and never raises."""
        self._queue.put_nowait(event)

    async def handle(self, event: SyncEvent) -> None:
        """Mirror one event. Failures are logged, not raised."""
        try:
            if isinstance(event, EntryDeleted):
                row_date = reporting_date(event.start_time, event.timezone).isoformat()
                await self._ledger.delete(event.entry_id, row_date)
                return

            entry = event.entry
            if entry.is_running:
                logger.debug("Entry %s still running, nothing to mirror", entry.id)
                return
            ctx = self._resolve_context(entry)
            row = build_sheet_row(
                entry,
                ctx.task,
                ctx.team_name,
                ctx.assignee_name,
                event.timezone,
                self._global_assignee,
            )
            action = await self._ledger.sync(row)
            logger.info("Spreadsheet synced for %s: %s", entry.id, action)
        except Exception as exc:
            logger.error("Spreadsheet sync failed for %s: %s", event, exc)

    def _dispatch(self, event: SyncEvent) -> None:
        task = asyncio.create_task(self.handle(event))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            self._dispatch(event)
            self._queue.task_done()

    def start(self) -> None:
        """Start consuming in the background on the running loop."""
        if self._runner is None or self._runner.done():
            self._runner = asyncio.create_task(self._run())
            logger.info("Ledger sync worker started")

    async def stop(self) -> None:
        await self.drain()
        if self._runner is not None:
            self._runner.cancel()
            try:
                await self._runner
            except asyncio.CancelledError:
                pass
            self._runner = None

    async def drain(self) -> None:
        """Handle everything queued so far and wait for in-flight syncs."""
        while not self._queue.empty():
            self._dispatch(self._queue.get_nowait())
            self._queue.task_done()
        if self._inflight:
            await asyncio.gather(*list(self._inflight))
