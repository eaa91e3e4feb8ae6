import asyncio
from datetime import timedelta

from conftest import START
from scanner_bot.forum.store import ScheduleStore
from scanner_bot.forum.tracker import ThreadLifecycleTracker

MINUTE = 60


def test_restored_schedule_fires_at_stored_time(tracker, gateway, store, clock, in_sync):
    gateway.add_thread("t1", owner_id="111", tags=("solved",))
    store.upsert("t1", START + timedelta(minutes=10))

    assert asyncio.run(tracker.initialize()) == 1
    assert tracker.pending_closures == {"t1": START + timedelta(minutes=10)}
    assert in_sync(tracker)

    asyncio.run(clock.advance(10 * MINUTE - 1))
    assert gateway.lock_calls == []
    asyncio.run(clock.advance(1))
    assert gateway.lock_calls == ["t1"]
    assert store.get("t1") is None


def test_stale_rows_are_dropped(tracker, gateway, store):
    gateway.add_thread("old", owner_id="111")
    store.upsert("old", START - timedelta(days=2))

    assert asyncio.run(tracker.initialize()) == 0
    assert store.get("old") is None
    assert tracker.pending_closures == {}


def test_past_due_row_is_not_locked_on_startup(tracker, gateway, store, clock):
    gateway.add_thread("t1", owner_id="111")
    store.upsert("t1", START - timedelta(hours=1))

    assert asyncio.run(tracker.initialize()) == 0
    asyncio.run(clock.advance(0))
    assert gateway.lock_calls == []
    assert tracker.pending_closures == {}
    assert store.get("t1") is not None

    asyncio.run(clock.advance(23 * 60 * MINUTE + 1))
    asyncio.run(tracker.initialize())
    assert store.get("t1") is None


def test_initialize_is_idempotent(tracker, store, clock):
    store.upsert("t1", START + timedelta(minutes=30))

    asyncio.run(tracker.initialize())
    asyncio.run(tracker.initialize())

    assert list(tracker.active_timers) == ["t1"]
    close_timers = [t for t in clock.pending() if t.when == START + timedelta(minutes=30)]
    assert len(close_timers) == 1


def test_shutdown_persists_pending_closes(tracker, gateway, store, clock, config):
    gateway.add_thread("t1", owner_id="111")
    asyncio.run(tracker.handle_solved_command(gateway.interaction("t1", "111")))
    asyncio.run(clock.advance(5 * MINUTE))

    asyncio.run(tracker.shutdown())
    assert tracker.pending_closures == {}
    assert tracker.active_timers == {}
    assert clock.pending() == []
    assert gateway.lock_calls == []

    reopened = ScheduleStore(store.path)
    restarted = ThreadLifecycleTracker(gateway, reopened, config, clock=clock)
    assert asyncio.run(restarted.initialize()) == 1
    assert restarted.pending_closures == {"t1": START + timedelta(hours=1)}

    asyncio.run(clock.advance(55 * MINUTE))
    assert gateway.lock_calls == ["t1"]
    assert reopened.get("t1") is None
    reopened.close()


def test_shutdown_drains_imminent_closes(tracker, gateway, store):
    gateway.add_thread("t1", owner_id="111")
    store.upsert("t1", START + timedelta(seconds=5))
    asyncio.run(tracker.initialize())

    asyncio.run(tracker.shutdown())
    assert gateway.lock_calls == ["t1"]
    assert tracker.pending_closures == {}


def test_shutdown_twice_is_harmless(tracker):
    asyncio.run(tracker.shutdown())
    asyncio.run(tracker.shutdown())
