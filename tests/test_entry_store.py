"""Tests for src.core.entry_store — optimistic mutations with rollback."""

from datetime import timedelta

import pytest

from fakes import InMemoryEntryBackend, utc
from src.core.entry_store import PROVISIONAL_PREFIX, TimeEntryStore
from src.core.errors import NotFoundError, TransientBackendError, ValidationError
from src.core.sync_worker import EntryCommitted, EntryDeleted
from src.data.models import TimeEntry


def _entry(entry_id="", start=None, end=None, task_id="t1", comment=""):
    start = start or utc(2025, 1, 31, 0, 0)
    return TimeEntry(
        id=entry_id, task_id=task_id, owner_user_id="u1",
        start_time=start, end_time=end, comment=comment, date="2025-01-31",
    )


def _store(backend, events=None, local_factory=None):
    publish = events.append if events is not None else None
    return TimeEntryStore(
        "u1", backend, local_backend_factory=local_factory,
        publish=publish, timezone="Asia/Tokyo",
    )


# ---------------------------------------------------------------------------
# load
# ---------------------------------------------------------------------------


class TestLoad:
    @pytest.mark.asyncio
    async def test_loads_newest_first(self):
        old = _entry("a", start=utc(2025, 1, 30, 0, 0), end=utc(2025, 1, 30, 1, 0))
        new = _entry("b", start=utc(2025, 1, 31, 0, 0), end=utc(2025, 1, 31, 1, 0))
        store = _store(InMemoryEntryBackend([old, new]))
        entries = await store.load()
        assert [e.id for e in entries] == ["b", "a"]
        assert not store.is_local_mode

    @pytest.mark.asyncio
    async def test_falls_back_to_local_mode(self):
        durable = InMemoryEntryBackend()
        durable.fail_list = True
        local = InMemoryEntryBackend([_entry("l1", end=utc(2025, 1, 31, 1, 0))])
        store = _store(durable, local_factory=lambda: local)
        entries = await store.load()
        assert store.is_local_mode
        assert [e.id for e in entries] == ["l1"]

    @pytest.mark.asyncio
    async def test_without_fallback_error_propagates(self):
        durable = InMemoryEntryBackend()
        durable.fail_list = True
        with pytest.raises(TransientBackendError):
            await _store(durable).load()

    @pytest.mark.asyncio
    async def test_local_mode_publishes_nothing(self):
        durable = InMemoryEntryBackend()
        durable.fail_list = True
        events = []
        store = _store(durable, events, local_factory=InMemoryEntryBackend)
        await store.load()
        await store.create(_entry(end=utc(2025, 1, 31, 1, 0)))
        assert events == []


# ---------------------------------------------------------------------------
# create
# ---------------------------------------------------------------------------


class TestCreate:
    @pytest.mark.asyncio
    async def test_returns_server_id(self, backend):
        store = _store(backend)
        saved = await store.create(_entry())
        assert not saved.id.startswith(PROVISIONAL_PREFIX)
        assert store.get(saved.id) is not None
        assert saved.id in backend.entries

    @pytest.mark.asyncio
    async def test_failure_removes_provisional_entry(self, backend):
        backend.fail_create = True
        store = _store(backend)
        with pytest.raises(TransientBackendError):
            await store.create(_entry())
        assert store.entries == []

    @pytest.mark.asyncio
    async def test_second_running_entry_rejected(self, backend):
        store = _store(backend)
        await store.create(_entry())
        with pytest.raises(ValidationError):
            await store.create(_entry(start=utc(2025, 1, 31, 2, 0)))
        assert len(store.entries) == 1

    @pytest.mark.asyncio
    async def test_completed_entry_published(self, backend):
        events = []
        store = _store(backend, events)
        saved = await store.create(_entry(end=utc(2025, 1, 31, 1, 0)))
        assert events == [EntryCommitted(saved, "Asia/Tokyo")]

    @pytest.mark.asyncio
    async def test_running_entry_not_published(self, backend):
        events = []
        store = _store(backend, events)
        await store.create(_entry())
        assert events == []


# ---------------------------------------------------------------------------
# update
# ---------------------------------------------------------------------------


class TestUpdate:
    @pytest.mark.asyncio
    async def test_applied_immediately(self, backend):
        store = _store(backend)
        saved = await store.create(_entry())
        await store.update(saved.id, comment="now")
        assert store.get(saved.id).comment == "now"
        await store.flush()
        assert backend.entries[saved.id].comment == "now"

    @pytest.mark.asyncio
    async def test_rollback_restores_full_prior_entry(self, backend):
        store = _store(backend)
        saved = await store.create(_entry(comment="before"))
        backend.fail_update = True
        end = saved.start_time + timedelta(hours=1)
        await store.update(saved.id, comment="after", end_time=end)
        assert store.get(saved.id).comment == "after"
        await store.flush()
        restored = store.get(saved.id)
        assert restored.comment == "before"
        assert restored.end_time is None

    @pytest.mark.asyncio
    async def test_commit_publishes_current_entry(self, backend):
        events = []
        store = _store(backend, events)
        saved = await store.create(_entry())
        end = saved.start_time + timedelta(hours=1)
        await store.update(saved.id, end_time=end, comment="done")
        await store.flush()
        assert len(events) == 1
        assert events[0].entry.end_time == end
        assert events[0].entry.comment == "done"

    @pytest.mark.asyncio
    async def test_failed_update_publishes_nothing(self, backend):
        events = []
        store = _store(backend, events)
        saved = await store.create(_entry())
        backend.fail_update = True
        await store.update(saved.id, comment="x")
        await store.flush()
        assert events == []

    @pytest.mark.asyncio
    async def test_unknown_id(self, backend):
        store = _store(backend)
        with pytest.raises(NotFoundError):
            await store.update("nope", comment="x")


# ---------------------------------------------------------------------------
# delete
# ---------------------------------------------------------------------------


class TestDelete:
    @pytest.mark.asyncio
    async def test_removed_and_published(self, backend):
        events = []
        store = _store(backend, events)
        saved = await store.create(_entry(end=utc(2025, 1, 31, 1, 0)))
        events.clear()
        await store.delete(saved.id)
        assert store.get(saved.id) is None
        await store.flush()
        assert saved.id not in backend.entries
        assert events == [EntryDeleted(saved.id, saved.start_time, "Asia/Tokyo")]

    @pytest.mark.asyncio
    async def test_failure_reinserts_at_original_position(self, backend):
        store = _store(backend)
        first = await store.create(_entry(start=utc(2025, 1, 31, 0, 0), end=utc(2025, 1, 31, 1, 0)))
        second = await store.create(_entry(start=utc(2025, 1, 31, 2, 0), end=utc(2025, 1, 31, 3, 0)))
        order = [e.id for e in store.entries]
        backend.fail_delete = True
        await store.delete(first.id)
        assert store.get(first.id) is None
        await store.flush()
        assert [e.id for e in store.entries] == order
        assert second.id in order

    @pytest.mark.asyncio
    async def test_unknown_id(self, backend):
        store = _store(backend)
        with pytest.raises(NotFoundError):
            await store.delete("nope")


# ---------------------------------------------------------------------------
# Manual entries and edits
# ---------------------------------------------------------------------------


class TestManual:
    @pytest.mark.asyncio
    async def test_add_manual_same_day(self, backend):
        events = []
        store = _store(backend, events)
        saved = await store.add_manual(
            "t1", utc(2025, 1, 31, 0, 0), utc(2025, 1, 31, 1, 0), "notes",
            now=utc(2025, 1, 31, 5, 0),
        )
        assert len(saved) == 1
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_add_manual_split_across_midnight(self, backend):
        store = _store(backend)
        # 23:00 -> 01:00 Tokyo time
        saved = await store.add_manual(
            "t1", utc(2025, 1, 31, 14, 0), utc(2025, 1, 31, 16, 0), "late",
            now=utc(2025, 2, 1, 0, 0),
        )
        assert len(saved) == 2
        assert saved[0].end_time + timedelta(milliseconds=1) == saved[1].start_time

    @pytest.mark.asyncio
    async def test_add_manual_future_end_rejected(self, backend):
        store = _store(backend)
        with pytest.raises(ValidationError):
            await store.add_manual(
                "t1", utc(2025, 1, 31, 0, 0), utc(2025, 1, 31, 3, 0), "",
                now=utc(2025, 1, 31, 2, 0),
            )
        assert store.entries == []

    @pytest.mark.asyncio
    async def test_edit_validates_before_update(self, backend):
        store = _store(backend)
        saved = await store.create(_entry(end=utc(2025, 1, 31, 1, 0)))
        with pytest.raises(ValidationError):
            await store.edit(
                saved.id, utc(2025, 1, 31, 2, 0), utc(2025, 1, 31, 1, 0), "",
                now=utc(2025, 1, 31, 5, 0),
            )
        assert store.get(saved.id).end_time == utc(2025, 1, 31, 1, 0)

    @pytest.mark.asyncio
    async def test_edit_applies(self, backend):
        store = _store(backend)
        saved = await store.create(_entry(end=utc(2025, 1, 31, 1, 0)))
        await store.edit(
            saved.id, utc(2025, 1, 31, 0, 30), utc(2025, 1, 31, 1, 30), "edited",
            now=utc(2025, 1, 31, 5, 0),
        )
        await store.flush()
        assert backend.entries[saved.id].comment == "edited"
        assert backend.entries[saved.id].start_time == utc(2025, 1, 31, 0, 30)

    @pytest.mark.asyncio
    async def test_edit_moves_reporting_date_with_start(self, backend):
        store = _store(backend)
        saved = await store.create(_entry(end=utc(2025, 1, 31, 1, 0)))
        # 2025-02-01 00:30 to 01:30 JST
        await store.edit(
            saved.id, utc(2025, 1, 31, 15, 30), utc(2025, 1, 31, 16, 30), "",
            now=utc(2025, 2, 1, 0, 0),
        )
        await store.flush()
        assert backend.entries[saved.id].date == "2025-02-01"
