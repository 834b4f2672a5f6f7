"""Notification port: how core modules reach a user.

The timer controller sends start, stop and progress messages through this
protocol; the Telegram adapter is the only implementation.
"""

from __future__ import annotations

from typing import Protocol


class NotificationPort(Protocol):
    """Abstract notification interface used by core modules."""

    async def send_message(self, user_id: int, text: str) -> None: ...
