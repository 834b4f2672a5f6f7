"""
DayLog — Spreadsheet Ledger.

One sheet per calendar month, one row per completed time entry, keyed by
the entry id in column A. The ledger is a best-effort mirror of the store:
callers log its failures and never roll back because of them.

The pending-write set and the confirmed-sheet cache belong to the ledger
instance. Build one ledger per process and share it.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING, Literal

from src.core.errors import ConflictError
from src.core.reporting import month_sheet_name, parse_instant

if TYPE_CHECKING:
    from src.data.models import SheetRowData
    from src.ports.sheet_port import SpreadsheetPort

logger = logging.getLogger(__name__)

SHEET_HEADER = [
    "エントリーID",
    "日付",
    "Team名",
    "Project名",
    "Issue名",
    "コメント",
    "稼働時間(時間)",
    "Assignee名",
    "開始時刻",
    "終了時刻",
]

WriteResult = Literal["created", "already_exists"]
UpdateResult = Literal["updated", "not_found"]
SyncResult = Literal["created", "already_exists", "updated"]


def _parse_row_date(value: str) -> date:
    """Accept YYYY-MM-DD, YYYY/MM/DD or a full ISO instant."""
    text = value.strip()
    if "T" in text:
        return parse_instant(text).date()
    return date.fromisoformat(text.replace("/", "-")[:10])


def _sheet_for(row_date: str) -> str:
    return month_sheet_name(_parse_row_date(row_date))


class SpreadsheetLedger:
    """Idempotent, ID-keyed mirror of completed entries."""

    def __init__(self, sheets: SpreadsheetPort) -> None:
        self._sheets = sheets
        self._pending_writes: set[str] = set()
        self._known_sheets: set[str] = set()

    async def _resolve_sheet(self, row_date: str) -> str:
        """Month sheet for `row_date`, created with the header if missing."""
        sheet = _sheet_for(row_date)
        if sheet not in self._known_sheets:
            await self._sheets.get_or_create_month_sheet(sheet, SHEET_HEADER)
            self._known_sheets.add(sheet)
        return sheet

    async def write(self, data: SheetRowData) -> WriteResult:
        """Append the row unless a row with the same id already exists.

        A second write for an id whose first write is still in flight
        returns "already_exists" without scanning.
        """
        entry_id = data.time_entry_id
        if entry_id in self._pending_writes:
            logger.info("Write already in progress for %s", entry_id)
            return "already_exists"

        self._pending_writes.add(entry_id)
        try:
            sheet = await self._resolve_sheet(data.date)
            if await self._sheets.find_row_by_key(sheet, entry_id) is not None:
                logger.info("Entry %s already in %s, skipping", entry_id, sheet)
                return "already_exists"

            await self._sheets.append_row(sheet, data.to_row())
            logger.info("Time entry %s written to sheet %s", entry_id, sheet)
            return "created"
        finally:
            self._pending_writes.discard(entry_id)

    async def update(self, data: SheetRowData) -> UpdateResult:
        """Overwrite the row for this id in place. Never appends."""
        sheet = await self._resolve_sheet(data.date)
        row_index = await self._sheets.find_row_by_key(sheet, data.time_entry_id)
        if row_index is None:
            logger.info("Entry %s not found in %s", data.time_entry_id, sheet)
            return "not_found"

        await self._sheets.update_row(sheet, row_index, data.to_row())
        logger.info("Time entry %s updated in %s, row %d", data.time_entry_id, sheet, row_index)
        return "updated"

    async def sync(self, data: SheetRowData) -> SyncResult:
        """Upsert: try update, and only write when update reports not_found."""
        if await self.update(data) == "updated":
            return "updated"
        return await self.write(data)

    async def _delete_at(self, sheet: str, entry_id: str, row_index: int) -> None:
        current_index = await self._sheets.find_row_by_key(sheet, entry_id)
        if current_index is None:
            logger.info("Entry %s already deleted by another process", entry_id)
            return
        if current_index != row_index:
            raise ConflictError(
                f"Row for {entry_id} shifted from {row_index} to {current_index}"
            )
        await self._sheets.delete_row(sheet, row_index)
        logger.info("Time entry %s deleted from %s, row %d", entry_id, sheet, row_index)

    async def delete(self, entry_id: str, row_date: str) -> None:
        """Remove the row for `entry_id` from the month of `row_date`.

        A missing row is success: older entries may never have been mirrored,
        and a concurrent actor may have deleted it first. If the row moves
        between the scan and the delete, rescan and retry once; a second
        shift is left to whoever is moving it.
        """
        # Lookup only: a month that was never mirrored gets no new tab
        sheet = _sheet_for(row_date)
        row_index = await self._sheets.find_row_by_key(sheet, entry_id)
        if row_index is None:
            logger.warning(
                "Entry %s not found in %s; it may predate the ledger, skipping", entry_id, sheet,
            )
            return

        try:
            await self._delete_at(sheet, entry_id, row_index)
        except ConflictError as exc:
            logger.warning("%s, rescanning", exc)
            row_index = await self._sheets.find_row_by_key(sheet, entry_id)
            if row_index is None:
                return
            try:
                await self._delete_at(sheet, entry_id, row_index)
            except ConflictError:
                logger.warning("Row for %s still moving, leaving it to the other writer", entry_id)
