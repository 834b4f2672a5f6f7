"""Entry backend port — abstract interface for durable time-entry storage.

The store depends on this protocol, never on a specific database. The
local-only fallback implements the same shape.
"""

from __future__ import annotations

from typing import Any, Protocol

from src.core.errors import TransientBackendError
from src.data.models import TimeEntry

__all__ = ["EntryBackendPort", "TransientBackendError"]


class EntryBackendPort(Protocol):
    """Conventional CRUD with server-assigned ids."""

    async def create_entry(self, entry: TimeEntry) -> TimeEntry: ...

    async def update_entry(self, entry_id: str, fields: dict[str, Any]) -> None: ...

    async def delete_entry(self, entry_id: str) -> None: ...

    async def list_entries_for_user(self, user_id: str) -> list[TimeEntry]: ...
