"""Tests for src.config — settings parsing and start-up validation."""

import pytest
from pydantic import ValidationError

from src.config import DEFAULT_TIMEZONE, Settings, _load_settings


class TestSettings:
    def test_user_ids_parsed_from_csv(self):
        s = Settings(ALLOWED_USER_IDS="1, 2,3", ADMIN_USER_IDS="2")
        assert s.ALLOWED_USER_IDS == [1, 2, 3]
        assert s.ADMIN_USER_IDS == [2]

    def test_empty_user_ids(self):
        assert Settings(ALLOWED_USER_IDS="").ALLOWED_USER_IDS == []

    def test_timezone_validated(self):
        assert Settings(TIMEZONE="Europe/Paris").TIMEZONE == "Europe/Paris"
        assert Settings(TIMEZONE="").TIMEZONE == DEFAULT_TIMEZONE
        with pytest.raises(ValidationError):
            Settings(TIMEZONE="Mars/Olympus")

    def test_negative_interval_rejected(self):
        with pytest.raises(ValidationError):
            Settings(NOTIFICATION_INTERVAL_SECONDS="-1")

    def test_sheets_enabled_needs_id_and_credentials(self):
        assert not Settings().sheets_enabled
        assert not Settings(GOOGLE_SPREADSHEET_ID="abc").sheets_enabled
        assert Settings(
            GOOGLE_SPREADSHEET_ID="abc", GOOGLE_SERVICE_ACCOUNT_FILE="key.json",
        ).sheets_enabled


class TestLoadSettings:
    def test_missing_token_exits(self, monkeypatch):
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "")
        with pytest.raises(SystemExit):
            _load_settings()

    def test_placeholder_token_exits(self, monkeypatch):
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "your-bot-token")
        with pytest.raises(SystemExit):
            _load_settings()

    def test_loads_from_environment(self, monkeypatch):
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
        monkeypatch.setenv("TIMEZONE", "America/New_York")
        monkeypatch.setenv("NOTIFICATION_INTERVAL_SECONDS", "0")
        s = _load_settings()
        assert s.TIMEZONE == "America/New_York"
        assert s.NOTIFICATION_INTERVAL_SECONDS == 0
