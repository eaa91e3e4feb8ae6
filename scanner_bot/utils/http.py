from __future__ import annotations

from typing import Any

import requests  # type: ignore[import-untyped]

from scanner_bot.utils.backoff import retry
from scanner_bot.utils.logging import get_logger

log = get_logger(__name__)


def request_json(
    method: str,
    url: str,
    *,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    data: Any = None,
    files: Any = None,
    timeout: int = 30,
    operation: str = "http_request_json",
) -> dict:
    """Perform a request with retries and return the decoded JSON body.

    Raises the last ``requests`` exception once retries are exhausted or the
    failure is not retryable (4xx other than 429).
    """

    def _call() -> dict:
        resp = requests.request(
            method,
            url,
            params=params,
            headers=headers,
            data=data,
            files=files,
            timeout=timeout,
        )
        resp.raise_for_status()
        return resp.json()

    return retry(_call, operation=operation)


def get_json(
    url: str,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    timeout: int = 20,
) -> tuple[dict | None, str | None]:
    try:
        data = request_json(
            "GET", url, params=params, headers=headers, timeout=timeout, operation="http_get_json"
        )
        return data, None
    except Exception as exc:
        log.error(
            "http_get_json_failed",
            extra={"extra_fields": {"operation": "http_get_json", "error": str(exc)[:200]}},
        )
        return None, str(exc)


def download_bytes(
    url: str,
    headers: dict[str, str] | None = None,
    timeout: int = 60,
    max_bytes: int | None = None,
) -> bytes:
    def _call() -> bytes:
        with requests.get(url, stream=True, headers=headers, timeout=timeout) as r:
            r.raise_for_status()
            chunks: list[bytes] = []
            size = 0
            for chunk in r.iter_content(chunk_size=8192):
                if not chunk:
                    continue
                size += len(chunk)
                if max_bytes is not None and size > max_bytes:
                    raise ValueError(f"download exceeds {max_bytes} bytes")
                chunks.append(chunk)
        return b"".join(chunks)

    try:
        return retry(_call, operation="http_download")
    except Exception as exc:
        log.error(
            "http_download_failed",
            extra={"extra_fields": {"operation": "http_download", "error": str(exc)[:200]}},
        )
        raise
