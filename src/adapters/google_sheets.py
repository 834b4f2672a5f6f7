"""Google Sheets adapter — implements SpreadsheetPort for the Sheets v4 API.

All Google-specific logic lives here. The ledger never imports this
directly; it depends on the SpreadsheetPort protocol. The client library
is synchronous, so every request runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from src.ports.sheet_port import SheetError

logger = logging.getLogger(__name__)


def _a1(sheet: str, cells: str) -> str:
    """A1 range with the sheet title quoted."""
    escaped = sheet.replace("'", "''")
    return f"'{escaped}'!{cells}"


class GoogleSheetsAdapter:
    """Google Sheets implementation of SpreadsheetPort."""

    def __init__(self, spreadsheet_id: str, service_factory: Callable[[], Any] | None = None) -> None:
        if not spreadsheet_id:
            raise SheetError("GOOGLE_SPREADSHEET_ID is not set")
        self._spreadsheet_id = spreadsheet_id
        self._service_factory = service_factory
        self._service = None
        self._titles: set[str] = set()

    def _get_service(self):
        if self._service is None:
            if self._service_factory is None:
                from src.integrations.google_auth import get_sheets_service
                self._service_factory = get_sheets_service
            self._service = self._service_factory()
        return self._service

    async def _execute(self, request) -> dict:
        return await asyncio.to_thread(request.execute)

    async def _sheet_properties(self) -> list[dict]:
        service = self._get_service()
        spreadsheet = await self._execute(
            service.spreadsheets().get(spreadsheetId=self._spreadsheet_id)
        )
        return [s.get("properties", {}) for s in spreadsheet.get("sheets", [])]

    async def _has_sheet(self, title: str) -> bool:
        """Seen titles are cached for the lifetime of the adapter."""
        if title not in self._titles:
            self._titles.update(p.get("title") for p in await self._sheet_properties())
        return title in self._titles

    async def get_or_create_month_sheet(self, label: str, header: list[str]) -> None:
        try:
            if await self._has_sheet(label):
                return

            service = self._get_service()
            await self._execute(
                service.spreadsheets().batchUpdate(
                    spreadsheetId=self._spreadsheet_id,
                    body={"requests": [{"addSheet": {"properties": {"title": label}}}]},
                )
            )
            await self._execute(
                service.spreadsheets().values().update(
                    spreadsheetId=self._spreadsheet_id,
                    range=_a1(label, "A1:J1"),
                    valueInputOption="RAW",
                    body={"values": [header]},
                )
            )
            logger.info("Created new sheet: %s", label)
            self._titles.add(label)
        except SheetError:
            raise
        except Exception as exc:
            logger.error("Failed to ensure sheet %s exists: %s", label, exc)
            raise SheetError(f"Failed to ensure sheet {label}: {exc}") from exc

    async def find_row_by_key(self, sheet: str, key: str) -> int | None:
        try:
            if not await self._has_sheet(sheet):
                return None
            result = await self._execute(
                self._get_service().spreadsheets().values().get(
                    spreadsheetId=self._spreadsheet_id, range=_a1(sheet, "A:A"),
                )
            )
        except Exception as exc:
            logger.error("Failed to scan sheet %s for %s: %s", sheet, key, exc)
            raise SheetError(f"Failed to scan sheet {sheet}: {exc}") from exc

        for i, row in enumerate(result.get("values", [])):
            if i == 0:
                continue  # header
            if row and row[0] == key:
                return i + 1
        return None

    async def append_row(self, sheet: str, row: list[str]) -> None:
        try:
            await self._execute(
                self._get_service().spreadsheets().values().append(
                    spreadsheetId=self._spreadsheet_id,
                    range=_a1(sheet, "A:J"),
                    valueInputOption="RAW",
                    insertDataOption="INSERT_ROWS",
                    body={"values": [row]},
                )
            )
        except Exception as exc:
            logger.error("Failed to append row to %s: %s", sheet, exc)
            raise SheetError(f"Failed to append to sheet {sheet}: {exc}") from exc

    async def update_row(self, sheet: str, row_index: int, row: list[str]) -> None:
        try:
            await self._execute(
                self._get_service().spreadsheets().values().update(
                    spreadsheetId=self._spreadsheet_id,
                    range=_a1(sheet, f"A{row_index}:J{row_index}"),
                    valueInputOption="RAW",
                    body={"values": [row]},
                )
            )
        except Exception as exc:
            logger.error("Failed to update row %d in %s: %s", row_index, sheet, exc)
            raise SheetError(f"Failed to update row {row_index}: {exc}") from exc

    async def delete_row(self, sheet: str, row_index: int) -> None:
        try:
            sheet_id = None
            for props in await self._sheet_properties():
                if props.get("title") == sheet:
                    sheet_id = props.get("sheetId")
                    break
            if sheet_id is None:
                raise SheetError(f"Sheet {sheet} not found")

            await self._execute(
                self._get_service().spreadsheets().batchUpdate(
                    spreadsheetId=self._spreadsheet_id,
                    body={
                        "requests": [{
                            "deleteDimension": {
                                "range": {
                                    "sheetId": sheet_id,
                                    "dimension": "ROWS",
                                    "startIndex": row_index - 1,
                                    "endIndex": row_index,
                                },
                            },
                        }],
                    },
                )
            )
        except SheetError:
            raise
        except Exception as exc:
            logger.error("Failed to delete row %d in %s: %s", row_index, sheet, exc)
            raise SheetError(f"Failed to delete row {row_index}: {exc}") from exc
