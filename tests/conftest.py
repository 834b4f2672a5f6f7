"""Shared test fixtures and configuration.

Sets up fake environment variables so src.config doesn't sys.exit(),
and provides common fixtures: temp SQLite stores, an in-memory
spreadsheet and an in-memory entry backend.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("ADMIN_USER_IDS", "")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TIMEZONE", "Asia/Tokyo")
os.environ.setdefault("GOOGLE_SPREADSHEET_ID", "")
os.environ.setdefault("NOTIFICATION_INTERVAL_SECONDS", "3600")

import pytest

from fakes import FakeSpreadsheet, InMemoryEntryBackend, RecordingNotifier


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_sheets():
    return FakeSpreadsheet()


@pytest.fixture
def backend():
    return InMemoryEntryBackend()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_daylog.db")


@pytest.fixture
def entry_db(tmp_db_path):
    from src.data.db import TimeEntryDB
    return TimeEntryDB(db_path=tmp_db_path)


@pytest.fixture
def task_db(tmp_db_path):
    from src.data.db import TaskDB
    return TaskDB(db_path=tmp_db_path)


@pytest.fixture
def team_db(tmp_db_path):
    from src.data.db import TeamDB
    return TeamDB(db_path=tmp_db_path)


@pytest.fixture
def user_db(tmp_db_path):
    from src.data.db import UserDB
    return UserDB(db_path=tmp_db_path)


@pytest.fixture
def store(backend):
    """A TimeEntryStore for user "u1" in Asia/Tokyo, without ledger events."""
    from src.core.entry_store import TimeEntryStore
    return TimeEntryStore("u1", backend, timezone="Asia/Tokyo")
