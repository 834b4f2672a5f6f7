"""Spreadsheet port — the five primitives the ledger is built on.

Row indexes are 1-based sheet row numbers; row 1 is the header.
"""

from __future__ import annotations

from typing import Protocol

from src.core.errors import TransientBackendError


class SheetError(TransientBackendError):
    """Raised when any spreadsheet provider operation fails."""


class SpreadsheetPort(Protocol):
    """Abstract spreadsheet interface used by the ledger."""

    async def get_or_create_month_sheet(self, label: str, header: list[str]) -> None: ...

    async def find_row_by_key(self, sheet: str, key: str) -> int | None: ...

    async def append_row(self, sheet: str, row: list[str]) -> None: ...

    async def update_row(self, sheet: str, row_index: int, row: list[str]) -> None: ...

    async def delete_row(self, sheet: str, row_index: int) -> None: ...
