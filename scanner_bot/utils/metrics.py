from __future__ import annotations
from typing import Dict, Optional
import time
from threading import RLock

class Metrics:
    """Process-local counters keyed ``<area>.<name>[.<outcome>]``."""

    def __init__(self) -> None:
        self.started = time.time()
        self._counters: Dict[str, int] = {}
        self._lock = RLock()

    def inc(self, key: str, n: int = 1) -> None:
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + n

    def get(self, key: str) -> int:
        with self._lock:
            return self._counters.get(key, 0)

    def snapshot(self, area: Optional[str] = None) -> Dict[str, object]:
        with self._lock:
            data: Dict[str, object] = {
                k: v for k, v in sorted(self._counters.items())
                if area is None or k.split(".", 1)[0] == area
            }
        data["uptime_seconds"] = int(time.time() - self.started)
        return data

metrics = Metrics()

def record_command(name: str) -> None:
    metrics.inc(f"cmd.{name}")

def record_scan(provider: str, outcome: str) -> None:
    # outcome: ok | error
    metrics.inc(f"scan.{provider}.{outcome}")

def record_forum(transition: str) -> None:
    metrics.inc(f"forum.{transition}")
