from __future__ import annotations

import asyncio
import signal
from collections.abc import Awaitable, Callable
from typing import Iterable

from scanner_bot.utils.logging import get_logger

log = get_logger(__name__)

STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def install_stop_signals(
    stop: asyncio.Event, signals: Iterable[signal.Signals] = STOP_SIGNALS
) -> list[signal.Signals]:
    """Set ``stop`` when any of ``signals`` arrives; returns the ones installed."""
    loop = asyncio.get_running_loop()

    def _on_signal(sig: signal.Signals) -> None:
        log.info("shutdown_signal", extra={"extra_fields": {"signal": sig.name}})
        stop.set()

    installed = []
    for sig in signals:
        try:
            loop.add_signal_handler(sig, _on_signal, sig)
        except (NotImplementedError, RuntimeError):
            # Windows event loops, or not on the main thread.
            log.warning("signal_handler_unavailable", extra={"extra_fields": {"signal": sig.name}})
            continue
        installed.append(sig)
    return installed


async def serve_until_signal(
    start: Awaitable[None],
    close: Callable[[], Awaitable[None]],
    *,
    signals: Iterable[signal.Signals] = STOP_SIGNALS,
) -> None:
    """Run ``start`` until it returns or a stop signal arrives, then ``close``."""
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    installed = install_stop_signals(stop, signals)
    runner = asyncio.ensure_future(start)
    waiter = asyncio.ensure_future(stop.wait())
    try:
        await asyncio.wait({runner, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        for sig in installed:
            loop.remove_signal_handler(sig)
        await close()
    # close() makes start() return; re-raise anything it failed with.
    await runner


__all__ = ["STOP_SIGNALS", "install_stop_signals", "serve_until_signal"]
