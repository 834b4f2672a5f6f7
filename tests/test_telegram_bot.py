"""Tests for src.bot.telegram_bot — Telegram bot handlers.

Handlers run against a real SessionRegistry over temp SQLite stores and
the in-memory entry backend; Telegram objects are mocked.
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram.ext import ConversationHandler

from src.bot.telegram_bot import (
    STOP_COMMENT,
    _handle_task_callback,
    _parse_local,
    cmd_alltasks,
    cmd_delete,
    cmd_edit,
    cmd_email,
    cmd_entries,
    cmd_go,
    cmd_log,
    cmd_name,
    cmd_stats,
    cmd_status,
    cmd_stop,
    cmd_tasks,
    cmd_timezone,
    stop_cancel,
    stop_comment,
)
from src.core.reporting import utc_now
from src.core.sessions import SessionRegistry
from src.core.timer import TimerState
from src.data.models import Task, TaskState, Team

USER_ID = 12345  # matches ALLOWED_USER_IDS in conftest


def _make_update(text="", user_id=USER_ID):
    """Create a mock Update with a text message from an authorized user."""
    update = MagicMock()
    update.message.text = text
    update.effective_user.id = user_id
    update.message.reply_text = AsyncMock()
    return update


def _make_context(registry, args=None):
    """Create a mock context with bot_data holding the session registry."""
    context = MagicMock()
    context.user_data = {}
    context.args = args or []
    context.bot_data = {"sessions": registry}
    return context


def _reply(update) -> str:
    return update.message.reply_text.call_args.args[0]


@pytest.fixture
def registry(backend, task_db, team_db, user_db, tmp_path):
    return SessionRegistry(
        backend=backend,
        task_db=task_db,
        team_db=team_db,
        user_db=user_db,
        local_store_dir=str(tmp_path / "local"),
    )


@pytest.fixture
def ready_registry(registry):
    """Registry with a named user who has selected task t1."""
    registry.task_db.upsert_task(Task(id="t1", name="Build", assignee_email="alice@example.com"))
    registry.profile(USER_ID)
    registry.user_db.set_display_name(str(USER_ID), "Alice")
    registry.user_db.set_email(str(USER_ID), "alice@example.com")
    registry.user_db.set_selected_task(str(USER_ID), "t1")
    return registry


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class TestAuthorization:
    @pytest.mark.asyncio
    async def test_stranger_silently_ignored(self, registry):
        update = _make_update(user_id=999)
        await cmd_name(update, _make_context(registry, ["Mallory"]))
        update.message.reply_text.assert_not_called()
        assert registry.user_db.get_user("999") is None


# ---------------------------------------------------------------------------
# Profile commands
# ---------------------------------------------------------------------------


class TestProfileCommands:
    @pytest.mark.asyncio
    async def test_name(self, registry):
        update = _make_update()
        await cmd_name(update, _make_context(registry, ["Alice", "Smith"]))
        assert registry.user_db.get_user(str(USER_ID)).display_name == "Alice Smith"

    @pytest.mark.asyncio
    async def test_name_usage(self, registry):
        update = _make_update()
        await cmd_name(update, _make_context(registry))
        assert "Usage" in _reply(update)

    @pytest.mark.asyncio
    async def test_email(self, registry):
        update = _make_update()
        await cmd_email(update, _make_context(registry, ["Alice@Example.com"]))
        assert registry.user_db.get_user(str(USER_ID)).email == "alice@example.com"

    @pytest.mark.asyncio
    async def test_timezone_set_and_rejected(self, registry):
        update = _make_update()
        await cmd_timezone(update, _make_context(registry, ["Europe/Paris"]))
        assert registry.timezone_for(USER_ID) == "Europe/Paris"

        update = _make_update()
        await cmd_timezone(update, _make_context(registry, ["Mars/Olympus"]))
        assert "Unsupported" in _reply(update)
        assert registry.timezone_for(USER_ID) == "Europe/Paris"


# ---------------------------------------------------------------------------
# Task selection
# ---------------------------------------------------------------------------


class TestTasks:
    @pytest.mark.asyncio
    async def test_keyboard_grouped_by_team(self, ready_registry):
        ready_registry.team_db.add_team(Team(id="eng", name="Engineering"))
        ready_registry.team_db.add_member("eng", "alice@example.com")
        ready_registry.task_db.upsert_task(Task(id="t2", name="Shared", team_id="eng", identifier="ENG-5"))
        ready_registry.task_db.upsert_task(Task(id="t3", name="Done", assignee_email="alice@example.com",
                                               state=TaskState.COMPLETED))

        update = _make_update()
        await cmd_tasks(update, _make_context(ready_registry))
        markup = update.message.reply_text.call_args.kwargs["reply_markup"]
        buttons = [b.callback_data for row in markup.inline_keyboard for b in row]
        assert buttons[0] == "task:none"  # "Team: ENG" header first
        assert "task:t2" in buttons and "task:t1" in buttons
        assert "task:t3" not in buttons

    @pytest.mark.asyncio
    async def test_no_tasks(self, registry):
        update = _make_update()
        await cmd_tasks(update, _make_context(registry))
        assert "No tasks" in _reply(update)

    @pytest.mark.asyncio
    async def test_callback_selects_task(self, ready_registry):
        update = MagicMock()
        update.callback_query.data = "task:t1"
        update.callback_query.from_user.id = USER_ID
        update.callback_query.answer = AsyncMock()
        update.callback_query.edit_message_text = AsyncMock()
        ready_registry.user_db.set_selected_task(str(USER_ID), None)

        await _handle_task_callback(update, _make_context(ready_registry))
        assert ready_registry.user_db.get_user(str(USER_ID)).selected_task_id == "t1"

    @pytest.mark.asyncio
    async def test_callback_rejects_hidden_task(self, ready_registry):
        ready_registry.task_db.upsert_task(Task(id="secret", name="Other team", assignee_email="bob@example.com"))
        update = MagicMock()
        update.callback_query.data = "task:secret"
        update.callback_query.from_user.id = USER_ID
        update.callback_query.answer = AsyncMock()
        update.callback_query.edit_message_text = AsyncMock()

        await _handle_task_callback(update, _make_context(ready_registry))
        assert ready_registry.user_db.get_user(str(USER_ID)).selected_task_id == "t1"
        assert "no longer available" in update.callback_query.edit_message_text.call_args.args[0]

    @pytest.mark.asyncio
    async def test_alltasks_admin_only(self, ready_registry):
        update = _make_update()
        await cmd_alltasks(update, _make_context(ready_registry))
        assert "Only admins" in _reply(update)

        ready_registry.user_db.set_admin(str(USER_ID), True)
        update = _make_update()
        await cmd_alltasks(update, _make_context(ready_registry))
        assert "Build" in _reply(update)


# ---------------------------------------------------------------------------
# Timer flow
# ---------------------------------------------------------------------------


class TestTimerFlow:
    @pytest.mark.asyncio
    async def test_go_requires_name(self, registry):
        registry.task_db.upsert_task(Task(id="t1", name="Build", assignee_email="TaskForAll@task.com"))
        registry.profile(USER_ID)
        registry.user_db.set_selected_task(str(USER_ID), "t1")
        update = _make_update()
        await cmd_go(update, _make_context(registry))
        assert "/name" in _reply(update)
        session = await registry.get(USER_ID)
        assert session.timer.state is TimerState.IDLE

    @pytest.mark.asyncio
    async def test_go_requires_selected_task(self, registry):
        registry.profile(USER_ID)
        registry.user_db.set_display_name(str(USER_ID), "Alice")
        update = _make_update()
        await cmd_go(update, _make_context(registry))
        assert "/tasks" in _reply(update)

    @pytest.mark.asyncio
    async def test_go_refuses_task_that_turned_terminal(self, ready_registry):
        ready_registry.task_db.upsert_task(
            Task(id="t1", name="Build", assignee_email="alice@example.com", state=TaskState.COMPLETED)
        )
        update = _make_update()
        await cmd_go(update, _make_context(ready_registry))
        assert "no longer available" in _reply(update)
        session = await ready_registry.get(USER_ID)
        assert session.timer.state is TimerState.IDLE
        assert ready_registry.user_db.get_user(str(USER_ID)).selected_task_id is None

    @pytest.mark.asyncio
    async def test_go_stop_comment(self, ready_registry, backend):
        context = _make_context(ready_registry)
        await cmd_go(_make_update(), context)
        session = await ready_registry.get(USER_ID)
        assert session.timer.state is TimerState.RUNNING

        status = _make_update()
        await cmd_status(status, context)
        assert "Build" in _reply(status)

        assert await cmd_stop(_make_update(), context) == STOP_COMMENT
        assert session.timer.state is TimerState.AWAITING_COMMENT

        result = await stop_comment(_make_update("wrote tests"), context)
        assert result == ConversationHandler.END
        assert session.timer.state is TimerState.IDLE
        await session.store.flush()
        (entry,) = backend.entries.values()
        assert entry.comment == "wrote tests"
        assert entry.end_time is not None

    @pytest.mark.asyncio
    async def test_cancel_keeps_running(self, ready_registry):
        context = _make_context(ready_registry)
        await cmd_go(_make_update(), context)
        await cmd_stop(_make_update(), context)
        assert await stop_cancel(_make_update(), context) == ConversationHandler.END
        session = await ready_registry.get(USER_ID)
        assert session.timer.state is TimerState.RUNNING

    @pytest.mark.asyncio
    async def test_save_after_failed_midnight_continuation_tells_user(self, ready_registry, backend):
        context = _make_context(ready_registry)
        session = await ready_registry.get(USER_ID)
        await session.timer.start("t1", now=utc_now() - timedelta(days=1))
        await cmd_stop(_make_update(), context)
        backend.fail_create = True

        update = _make_update("late night")
        assert await stop_comment(update, context) == ConversationHandler.END
        assert session.timer.state is TimerState.IDLE
        assert "closed at midnight" in _reply(update)

    @pytest.mark.asyncio
    async def test_stop_without_timer(self, ready_registry):
        update = _make_update()
        assert await cmd_stop(update, _make_context(ready_registry)) == ConversationHandler.END
        assert "No timer" in _reply(update)


# ---------------------------------------------------------------------------
# Entries and stats
# ---------------------------------------------------------------------------


class TestEntries:
    def test_parse_local(self):
        instant = _parse_local("2025-01-31", "23:30", "Asia/Tokyo")
        assert instant.utcoffset().total_seconds() == 9 * 3600
        with pytest.raises(ValueError):
            _parse_local("31/01/2025", "23:30", "Asia/Tokyo")

    @pytest.mark.asyncio
    async def test_log_split_at_midnight(self, ready_registry, backend):
        update = _make_update()
        args = ["2025-01-31", "23:30", "2025-02-01", "00:30", "late", "deploy"]
        await cmd_log(update, _make_context(ready_registry, args))
        assert "split at midnight" in _reply(update)
        assert len(backend.entries) == 2
        assert {e.comment for e in backend.entries.values()} == {"late deploy"}

    @pytest.mark.asyncio
    async def test_log_rejects_inverted_range(self, ready_registry, backend):
        update = _make_update()
        args = ["2025-01-31", "10:00", "2025-01-31", "09:00"]
        await cmd_log(update, _make_context(ready_registry, args))
        assert "after start" in _reply(update)
        assert backend.entries == {}

    @pytest.mark.asyncio
    async def test_log_usage(self, ready_registry):
        update = _make_update()
        await cmd_log(update, _make_context(ready_registry, ["2025-01-31"]))
        assert "Usage" in _reply(update)

    @pytest.mark.asyncio
    async def test_delete_unknown(self, ready_registry):
        update = _make_update()
        await cmd_delete(update, _make_context(ready_registry, ["nope"]))
        assert "not found" in _reply(update)

    @pytest.mark.asyncio
    async def test_delete_running_entry_refused(self, ready_registry):
        context = _make_context(ready_registry)
        await cmd_go(_make_update(), context)
        session = await ready_registry.get(USER_ID)
        update = _make_update()
        await cmd_delete(update, _make_context(ready_registry, [session.timer.entry_id]))
        assert "Stop the running timer" in _reply(update)

    @pytest.mark.asyncio
    async def test_entries_empty(self, ready_registry):
        update = _make_update()
        await cmd_entries(update, _make_context(ready_registry))
        assert "No entries today" in _reply(update)

    @pytest.mark.asyncio
    async def test_stats_unknown_period(self, ready_registry):
        update = _make_update()
        await cmd_stats(update, _make_context(ready_registry, ["fortnight"]))
        assert "Unknown period" in _reply(update)

    @pytest.mark.asyncio
    async def test_stats_empty(self, ready_registry):
        update = _make_update()
        await cmd_stats(update, _make_context(ready_registry, ["last_month"]))
        assert "No time tracked" in _reply(update)


# ---------------------------------------------------------------------------
# Editing
# ---------------------------------------------------------------------------


class TestEdit:
    async def _logged_entry(self, registry):
        await cmd_log(_make_update(), _make_context(registry, ["2025-01-31", "09:00", "2025-01-31", "10:00", "draft"]))
        session = await registry.get(USER_ID)
        (entry,) = session.store.entries
        return session, entry

    @pytest.mark.asyncio
    async def test_edit_updates_times_and_comment(self, ready_registry, backend):
        session, entry = await self._logged_entry(ready_registry)
        update = _make_update()
        args = [entry.id, "2025-01-31", "09:30", "2025-01-31", "11:00", "fixed", "times"]
        await cmd_edit(update, _make_context(ready_registry, args))
        assert "updated" in _reply(update)

        await session.store.flush()
        stored = backend.entries[entry.id]
        assert stored.comment == "fixed times"
        assert stored.start_time == _parse_local("2025-01-31", "09:30", "Asia/Tokyo")
        assert stored.end_time == _parse_local("2025-01-31", "11:00", "Asia/Tokyo")

    @pytest.mark.asyncio
    async def test_edit_keeps_comment_when_omitted(self, ready_registry, backend):
        session, entry = await self._logged_entry(ready_registry)
        args = [entry.id, "2025-01-31", "08:00", "2025-01-31", "10:00"]
        await cmd_edit(_make_update(), _make_context(ready_registry, args))
        await session.store.flush()
        assert backend.entries[entry.id].comment == "draft"

    @pytest.mark.asyncio
    async def test_edit_rejects_inverted_range(self, ready_registry, backend):
        session, entry = await self._logged_entry(ready_registry)
        update = _make_update()
        args = [entry.id, "2025-01-31", "11:00", "2025-01-31", "10:00"]
        await cmd_edit(update, _make_context(ready_registry, args))
        assert "after start" in _reply(update)
        assert session.store.get(entry.id).end_time == entry.end_time

    @pytest.mark.asyncio
    async def test_edit_unknown_entry(self, ready_registry):
        update = _make_update()
        await cmd_edit(update, _make_context(ready_registry, ["nope", "2025-01-31", "09:00", "2025-01-31", "10:00"]))
        assert "not found" in _reply(update)

    @pytest.mark.asyncio
    async def test_edit_usage(self, ready_registry):
        update = _make_update()
        await cmd_edit(update, _make_context(ready_registry, ["only-id"]))
        assert "Usage" in _reply(update)
