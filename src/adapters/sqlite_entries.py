"""SQLite entry backend — implements EntryBackendPort over TimeEntryDB.

sqlite3 is blocking, so each call runs in a worker thread. sqlite failures
are wrapped into TransientBackendError so the store can roll back without
knowing which database it talks to.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from typing import Any

from src.core.errors import NotFoundError, TransientBackendError
from src.data.db import TimeEntryDB
from src.data.models import TimeEntry

logger = logging.getLogger(__name__)


class SQLiteEntryBackend:
    """SQLite implementation of EntryBackendPort."""

    def __init__(self, db: TimeEntryDB | None = None) -> None:
        self._db = db or TimeEntryDB()

    async def create_entry(self, entry: TimeEntry) -> TimeEntry:
        try:
            return await asyncio.to_thread(self._db.insert_entry, entry)
        except sqlite3.Error as exc:
            logger.error("Failed to insert time entry for task %s: %s", entry.task_id, exc)
            raise TransientBackendError(f"Failed to create entry: {exc}") from exc

    async def update_entry(self, entry_id: str, fields: dict[str, Any]) -> None:
        try:
            found = await asyncio.to_thread(self._db.update_entry, entry_id, fields)
        except sqlite3.Error as exc:
            logger.error("Failed to update time entry %s: %s", entry_id, exc)
            raise TransientBackendError(f"Failed to update entry: {exc}") from exc
        if not found:
            raise NotFoundError(f"Time entry {entry_id} not found")

    async def delete_entry(self, entry_id: str) -> None:
        try:
            await asyncio.to_thread(self._db.delete_entry, entry_id)
        except sqlite3.Error as exc:
            logger.error("Failed to delete time entry %s: %s", entry_id, exc)
            raise TransientBackendError(f"Failed to delete entry: {exc}") from exc

    async def list_entries_for_user(self, user_id: str) -> list[TimeEntry]:
        try:
            return await asyncio.to_thread(self._db.list_for_user, user_id)
        except sqlite3.Error as exc:
            logger.error("Failed to list time entries for %s: %s", user_id, exc)
            raise TransientBackendError(f"Failed to list entries: {exc}") from exc
