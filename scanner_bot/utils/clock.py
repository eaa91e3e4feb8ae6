from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Protocol

from scanner_bot.utils.logging import get_logger

log = get_logger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class Timer(Protocol):
    when: datetime

    def cancel(self) -> None: ...

    def done(self) -> bool: ...

    async def wait(self) -> None: ...


class Clock(Protocol):
    def now(self) -> datetime: ...

    async def sleep(self, seconds: float) -> None: ...

    def call_later(self, delay: float, callback: TimerCallback) -> Timer: ...


class AsyncioTimer:
    """Handle for a callback scheduled on the running event loop."""

    def __init__(self, when: datetime, task: asyncio.Task) -> None:
        self.when = when
        self._task = task

    def cancel(self) -> None:
        self._task.cancel()

    def done(self) -> bool:
        return self._task.done()

    async def wait(self) -> None:
        try:
            await self._task
        except asyncio.CancelledError:
            pass


class SystemClock:
    """Wall clock in UTC; timers are asyncio tasks."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    def call_later(self, delay: float, callback: TimerCallback) -> AsyncioTimer:
        delay = max(delay, 0.0)

        async def _run() -> None:
            await asyncio.sleep(delay)
            try:
                await callback()
            except Exception as exc:
                log.exception(
                    "timer_callback_failed",
                    extra={"extra_fields": {"error": exc.__class__.__name__}},
                )

        task = asyncio.get_running_loop().create_task(_run())
        return AsyncioTimer(self.now() + timedelta(seconds=delay), task)


__all__ = ["Clock", "Timer", "TimerCallback", "AsyncioTimer", "SystemClock"]
