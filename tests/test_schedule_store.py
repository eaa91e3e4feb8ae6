from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from scanner_bot.forum.store import ScheduleStore, ScheduleStoreError

T0 = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


class FailingInserts:
    """Connection proxy whose INSERT statements fail."""

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    @property
    def in_transaction(self) -> bool:
        return self._conn.in_transaction

    def execute(self, sql, params=()):
        if sql.lstrip().upper().startswith("INSERT"):
            raise sqlite3.OperationalError("disk I/O error")
        return self._conn.execute(sql, params)

    def close(self) -> None:
        self._conn.close()


def test_upsert_replaces_existing_row(store: ScheduleStore):
    store.upsert("t1", T0)
    store.upsert("t1", T0 + timedelta(hours=1))
    rows = store.list_all()
    assert len(rows) == 1
    assert rows[0].thread_id == "t1"
    assert rows[0].scheduled_time == T0 + timedelta(hours=1)


def test_rows_survive_reopen(tmp_path):
    path = str(tmp_path / "forum.db")
    first = ScheduleStore(path)
    first.init_schema()
    first.upsert("t1", T0)
    first.close()

    second = ScheduleStore(path)
    second.init_schema()
    row = second.get("t1")
    second.close()
    assert row is not None
    assert row.scheduled_time == T0
    assert row.created_at


def test_delete(store: ScheduleStore):
    store.upsert("t1", T0)
    assert store.delete("t1") is True
    assert store.delete("t1") is False
    assert store.get("t1") is None


def test_delete_older_than(store: ScheduleStore):
    store.upsert("old", T0 - timedelta(days=2))
    store.upsert("recent", T0 - timedelta(hours=1))
    store.upsert("future", T0 + timedelta(minutes=10))
    removed = store.delete_older_than(T0 - timedelta(days=1))
    assert removed == 1
    assert [r.thread_id for r in store.list_all()] == ["recent", "future"]


def test_times_in_other_zones_are_normalised(store: ScheduleStore):
    plus_two = timezone(timedelta(hours=2))
    store.upsert("a", datetime(2026, 1, 5, 13, 30, tzinfo=plus_two))  # 11:30 UTC
    store.upsert("b", T0)
    assert [r.thread_id for r in store.list_all()] == ["a", "b"]
    assert store.delete_older_than(T0) == 1


def test_failed_write_keeps_previous_row(store: ScheduleStore):
    store.upsert("t1", T0)
    store._conn = FailingInserts(store._conn)
    with pytest.raises(ScheduleStoreError):
        store.upsert("t1", T0 + timedelta(hours=3))
    assert store._conn.in_transaction is False
    row = store.get("t1")
    assert row is not None
    assert row.scheduled_time == T0


def test_closed_store_raises(tmp_path):
    s = ScheduleStore(str(tmp_path / "forum.db"))
    s.init_schema()
    s.close()
    s.close()
    with pytest.raises(ScheduleStoreError):
        s.list_all()
