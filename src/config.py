"""
DayLog — Centralized configuration.

Loads all settings from .env and validates them.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)

# Reporting timezones a user may pick from
SUPPORTED_TIMEZONES: tuple[str, ...] = (
    "Asia/Tokyo",
    "America/New_York",
    "America/Los_Angeles",
    "Europe/London",
    "Asia/Shanghai",
    "Asia/Kolkata",
    "Europe/Paris",
    "Australia/Sydney",
    "Pacific/Auckland",
)

DEFAULT_TIMEZONE = "Asia/Tokyo"


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str = ""

    # Security
    ALLOWED_USER_IDS: list[int] = []
    ADMIN_USER_IDS: list[int] = []  # flagged admin on first contact

    # SQLite (durable entry backend)
    DATABASE_PATH: str = "data/daylog.db"

    # Local-only fallback storage
    LOCAL_STORE_DIR: str = "data/local"

    # Google Sheets ledger (sync is disabled when either is missing)
    GOOGLE_SERVICE_ACCOUNT_KEY: str = ""
    GOOGLE_SERVICE_ACCOUNT_FILE: str = ""
    GOOGLE_SPREADSHEET_ID: str = ""

    # Reporting
    TIMEZONE: str = DEFAULT_TIMEZONE

    # Timer
    TICK_SECONDS: float = 1.0
    NOTIFICATION_INTERVAL_SECONDS: int = 3600  # 0 disables progress pings

    # Reserved assignee marking a task visible to everyone
    GLOBAL_TASK_ASSIGNEE: str = "TaskForAll@task.com"

    @field_validator("ALLOWED_USER_IDS", "ADMIN_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator("TIMEZONE", mode="before")
    @classmethod
    def check_timezone(cls, v: str | None) -> str:
        if not v:
            return DEFAULT_TIMEZONE
        if v not in SUPPORTED_TIMEZONES:
            raise ValueError(
                f"TIMEZONE must be one of {', '.join(SUPPORTED_TIMEZONES)}, got {v!r}"
            )
        return v

    @field_validator("NOTIFICATION_INTERVAL_SECONDS", mode="before")
    @classmethod
    def parse_interval(cls, v: str | int) -> int:
        value = int(v)
        if value < 0:
            raise ValueError("NOTIFICATION_INTERVAL_SECONDS cannot be negative")
        return value

    @property
    def sheets_enabled(self) -> bool:
        has_creds = bool(self.GOOGLE_SERVICE_ACCOUNT_KEY or self.GOOGLE_SERVICE_ACCOUNT_FILE)
        return has_creds and bool(self.GOOGLE_SPREADSHEET_ID)


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        ADMIN_USER_IDS=os.getenv("ADMIN_USER_IDS", ""),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/daylog.db"),
        LOCAL_STORE_DIR=os.getenv("LOCAL_STORE_DIR", "data/local"),
        GOOGLE_SERVICE_ACCOUNT_KEY=os.getenv("GOOGLE_SERVICE_ACCOUNT_KEY", ""),
        GOOGLE_SERVICE_ACCOUNT_FILE=os.getenv("GOOGLE_SERVICE_ACCOUNT_FILE", ""),
        GOOGLE_SPREADSHEET_ID=os.getenv("GOOGLE_SPREADSHEET_ID", ""),
        TIMEZONE=os.getenv("TIMEZONE", DEFAULT_TIMEZONE),
        TICK_SECONDS=float(os.getenv("TICK_SECONDS", "1")),
        NOTIFICATION_INTERVAL_SECONDS=os.getenv("NOTIFICATION_INTERVAL_SECONDS", "3600"),
        GLOBAL_TASK_ASSIGNEE=os.getenv("GLOBAL_TASK_ASSIGNEE", "TaskForAll@task.com"),
    )


# Singleton, imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
