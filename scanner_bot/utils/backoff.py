from __future__ import annotations

import random
import time
from collections.abc import Callable
from typing import TypeVar

from requests import exceptions as requests_exceptions  # type: ignore[import-untyped]

from scanner_bot.utils.logging import get_logger

T = TypeVar("T")

log = get_logger(__name__)

_RETRYABLE_REQUESTS_EXC_TYPES: tuple[type[BaseException], ...] = (
    requests_exceptions.Timeout,
    requests_exceptions.ConnectionError,
)


def _status_from_exception(exc: BaseException) -> int | None:
    response = getattr(exc, "response", None)
    if response is not None:
        return getattr(response, "status_code", None)
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status
    return None


def is_retryable_exception(exc: BaseException) -> bool:
    if isinstance(exc, TimeoutError):
        return True
    if isinstance(exc, _RETRYABLE_REQUESTS_EXC_TYPES):
        return True
    status = _status_from_exception(exc)
    if status == 429 or (status is not None and 500 <= status < 600):
        return True
    return False


def retry(
    func: Callable[[], T],
    *,
    max_attempts: int = 4,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    operation: str | None = None,
) -> T:
    """Run ``func`` with exponential backoff + full jitter."""

    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    attempt = 0
    while True:
        try:
            return func()
        except Exception as exc:
            attempt += 1
            retryable = is_retryable_exception(exc)
            if attempt >= max_attempts or not retryable:
                raise
            delay = min(max_delay, base_delay * (2 ** (attempt - 1)))
            sleep_for = random.uniform(0, delay)
            log.warning(
                "retrying_operation",
                extra={
                    "extra_fields": {
                        "operation": operation or getattr(func, "__name__", "call"),
                        "attempt": attempt,
                        "delay": round(sleep_for, 3),
                        "error": exc.__class__.__name__,
                    }
                },
            )
            time.sleep(sleep_for)


__all__ = ["retry", "is_retryable_exception"]
