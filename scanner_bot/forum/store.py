from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel

from scanner_bot.utils.logging import get_logger

log = get_logger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS scheduled_closes (
        thread_id TEXT PRIMARY KEY,
        scheduled_time TEXT NOT NULL,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_scheduled_closes_time ON scheduled_closes(scheduled_time)",
)


class ScheduleStoreError(RuntimeError):
    """A write to the schedule store failed and was rolled back."""


class ScheduledClose(BaseModel):
    thread_id: str
    scheduled_time: datetime
    created_at: Optional[str] = None


def encode_time(value: datetime) -> str:
    # Fixed width so that string order in SQL matches time order.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def decode_time(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ScheduleStore:
    """Pending thread locks, keyed by thread id. Survives restarts."""

    def __init__(self, path: str = "forum.db"):
        self.path = path
        # Autocommit; multi-statement writes open their own transaction.
        self._conn: Optional[sqlite3.Connection] = sqlite3.connect(path, isolation_level=None)
        self._conn.row_factory = sqlite3.Row

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise ScheduleStoreError("schedule store is closed")
        return self._conn

    def init_schema(self) -> None:
        for statement in _SCHEMA:
            self.conn.execute(statement)
        log.info("schedule_store_ready", extra={"extra_fields": {"path": self.path}})

    def upsert(self, thread_id: str, scheduled_time: datetime) -> ScheduledClose:
        conn = self.conn
        try:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute("DELETE FROM scheduled_closes WHERE thread_id = ?", (thread_id,))
            conn.execute(
                "INSERT INTO scheduled_closes (thread_id, scheduled_time) VALUES (?, ?)",
                (thread_id, encode_time(scheduled_time)),
            )
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            log.error(
                "schedule_store_write_failed",
                extra={"extra_fields": {"thread_id": thread_id, "error": str(exc)[:200]}},
            )
            raise ScheduleStoreError(f"could not schedule close for {thread_id}") from exc
        return ScheduledClose(thread_id=thread_id, scheduled_time=scheduled_time)

    def delete(self, thread_id: str) -> bool:
        try:
            cur = self.conn.execute(
                "DELETE FROM scheduled_closes WHERE thread_id = ?", (thread_id,)
            )
        except sqlite3.Error as exc:
            log.error(
                "schedule_store_delete_failed",
                extra={"extra_fields": {"thread_id": thread_id, "error": str(exc)[:200]}},
            )
            raise ScheduleStoreError(f"could not delete schedule for {thread_id}") from exc
        return cur.rowcount > 0

    def get(self, thread_id: str) -> Optional[ScheduledClose]:
        row = self.conn.execute(
            "SELECT thread_id, scheduled_time, created_at FROM scheduled_closes WHERE thread_id = ?",
            (thread_id,),
        ).fetchone()
        return self._to_model(row) if row else None

    def list_all(self) -> List[ScheduledClose]:
        rows = self.conn.execute(
            "SELECT thread_id, scheduled_time, created_at FROM scheduled_closes "
            "ORDER BY scheduled_time"
        ).fetchall()
        return [self._to_model(r) for r in rows]

    def delete_older_than(self, cutoff: datetime) -> int:
        """Drop rows whose scheduled time is before ``cutoff``."""
        try:
            cur = self.conn.execute(
                "DELETE FROM scheduled_closes WHERE scheduled_time < ?", (encode_time(cutoff),)
            )
        except sqlite3.Error as exc:
            log.error(
                "schedule_store_cleanup_failed",
                extra={"extra_fields": {"error": str(exc)[:200]}},
            )
            raise ScheduleStoreError("could not clean up stale schedules") from exc
        return cur.rowcount

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @staticmethod
    def _to_model(row: sqlite3.Row) -> ScheduledClose:
        return ScheduledClose(
            thread_id=row["thread_id"],
            scheduled_time=decode_time(row["scheduled_time"]),
            created_at=row["created_at"],
        )


__all__ = ["ScheduleStore", "ScheduleStoreError", "ScheduledClose", "encode_time", "decode_time"]
