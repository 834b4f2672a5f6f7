"""
DayLog — Local-only entry storage.

The degraded mode used when the durable backend is unreachable at start-up.
Entries live in one JSON document per namespace ({"entries": [...]}) and
expose the same contract as the durable backend.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import asdict
from pathlib import Path
from typing import Any

from src.core.errors import NotFoundError
from src.core.reporting import parse_instant, to_iso
from src.data.models import TimeEntry

logger = logging.getLogger(__name__)


def _entry_to_json(entry: TimeEntry) -> dict:
    data = asdict(entry)
    data["start_time"] = to_iso(entry.start_time)
    data["end_time"] = to_iso(entry.end_time) if entry.end_time else None
    return data


def _entry_from_json(data: dict) -> TimeEntry:
    return TimeEntry(
        id=data["id"],
        task_id=data["task_id"],
        owner_user_id=data["owner_user_id"],
        start_time=parse_instant(data["start_time"]),
        end_time=parse_instant(data["end_time"]) if data.get("end_time") else None,
        comment=data.get("comment", ""),
        date=data.get("date", ""),
    )


class LocalEntryStore:
    """JSON-file implementation of EntryBackendPort, keyed by namespace."""

    def __init__(self, namespace: str, base_dir: str | None = None) -> None:
        if base_dir is None:
            from src.config import settings
            base_dir = settings.LOCAL_STORE_DIR

        self._path = Path(base_dir) / f"{namespace}.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> list[TimeEntry]:
        if not self._path.exists():
            return []
        data = json.loads(self._path.read_text(encoding="utf-8"))
        return [_entry_from_json(item) for item in data.get("entries", [])]

    def _save(self, entries: list[TimeEntry]) -> None:
        payload = {"entries": [_entry_to_json(e) for e in entries]}
        self._path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")

    async def create_entry(self, entry: TimeEntry) -> TimeEntry:
        stored = entry.copy(id=uuid.uuid4().hex)
        entries = self._load()
        entries.insert(0, stored)
        self._save(entries)
        logger.debug("Local entry %s saved to %s", stored.id, self._path)
        return stored

    async def update_entry(self, entry_id: str, fields: dict[str, Any]) -> None:
        entries = self._load()
        for i, entry in enumerate(entries):
            if entry.id == entry_id:
                entries[i] = entry.copy(**fields)
                self._save(entries)
                return
        raise NotFoundError(f"Time entry {entry_id} not found")

    async def delete_entry(self, entry_id: str) -> None:
        entries = self._load()
        self._save([e for e in entries if e.id != entry_id])

    async def list_entries_for_user(self, user_id: str) -> list[TimeEntry]:
        entries = [e for e in self._load() if e.owner_user_id == user_id]
        entries.sort(key=lambda e: e.start_time, reverse=True)
        return entries
