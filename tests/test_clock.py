import asyncio
import json
import logging

from scanner_bot.utils.clock import SystemClock
from scanner_bot.utils.logging import JsonFormatter


def test_system_clock_runs_callback_after_delay():
    fired = []

    async def scenario():
        clock = SystemClock()

        async def callback():
            fired.append(clock.now())

        timer = clock.call_later(0.01, callback)
        assert not timer.done()
        await timer.wait()
        assert timer.done()
        return timer

    timer = asyncio.run(scenario())
    assert len(fired) == 1
    assert fired[0] >= timer.when


def test_cancelled_timer_never_fires():
    fired = []

    async def scenario():
        clock = SystemClock()

        async def callback():
            fired.append(True)

        timer = clock.call_later(10, callback)
        timer.cancel()
        await timer.wait()

    asyncio.run(scenario())
    assert fired == []


def test_failing_callback_is_contained():
    async def scenario():
        async def callback():
            raise RuntimeError("boom")

        timer = SystemClock().call_later(-5, callback)
        await timer.wait()
        return timer.done()

    assert asyncio.run(scenario()) is True


def test_json_formatter_merges_extra_fields():
    record = logging.LogRecord("scanner_bot.test", logging.INFO, __file__, 1, "thread_solved", None, None)
    record.extra_fields = {"thread_id": "t1", "actor_id": "111"}
    payload = json.loads(JsonFormatter().format(record))
    assert payload["event"] == "thread_solved"
    assert payload["level"] == "INFO"
    assert payload["thread_id"] == "t1"
    assert payload["actor_id"] == "111"
