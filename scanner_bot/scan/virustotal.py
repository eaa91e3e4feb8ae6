from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

from scanner_bot.utils.http import download_bytes, request_json
from scanner_bot.utils.logging import get_logger

log = get_logger(__name__)

BASE_URL = "https://www.virustotal.com/api/v3"
MAX_FILE_BYTES = 32 * 1024 * 1024
POLL_ATTEMPTS = 10
POLL_DELAY_SECONDS = 15.0


class ScanError(RuntimeError):
    """A threat-intelligence lookup could not be completed."""


class VirusTotalClient:
    """URL and file submissions against the VirusTotal v3 API."""

    def __init__(self, api_key: str, *, sleep: Callable[[float], None] = time.sleep):
        if not api_key:
            raise ScanError("VirusTotal API key is not configured")
        self.api_key = api_key
        self._sleep = sleep

    def _headers(self, **extra: str) -> dict[str, str]:
        return {"x-apikey": self.api_key, "accept": "application/json", **extra}

    def scan_url(self, url: str) -> str:
        """Submit ``url``; returns the analysis id."""
        log.info("virustotal_scan_url", extra={"extra_fields": {"url": url[:200]}})
        try:
            data = request_json(
                "POST",
                f"{BASE_URL}/urls",
                headers=self._headers(),
                data={"url": url},
                operation="virustotal_scan_url",
            )
        except Exception as exc:
            raise ScanError(f"URL scan failed: {_reason(exc)}") from exc
        return data["data"]["id"]

    def scan_file(self, file_url: str, filename: str = "scan_file") -> str:
        """Download an attachment and upload it for analysis; returns the analysis id."""
        try:
            payload = download_bytes(
                file_url,
                headers={"User-Agent": "DiscordBot (scanner-bot, 1.0.0)"},
                max_bytes=MAX_FILE_BYTES,
            )
        except ValueError as exc:
            raise ScanError("File size exceeds 32MB limit") from exc
        except Exception as exc:
            raise ScanError(f"File download failed: {_reason(exc)}") from exc
        log.info(
            "virustotal_scan_file",
            extra={"extra_fields": {"filename": filename, "bytes": len(payload)}},
        )
        try:
            upload = request_json(
                "GET",
                f"{BASE_URL}/files/upload_url",
                headers=self._headers(),
                operation="virustotal_upload_url",
            )
            data = request_json(
                "POST",
                upload["data"],
                headers=self._headers(),
                files={"file": (filename, payload, "application/octet-stream")},
                timeout=120,
                operation="virustotal_upload",
            )
        except Exception as exc:
            raise ScanError(f"File scan failed: {_reason(exc)}") from exc
        return data["data"]["id"]

    def get_analysis(self, analysis_id: str) -> dict[str, Any]:
        try:
            return request_json(
                "GET",
                f"{BASE_URL}/analyses/{analysis_id}",
                headers=self._headers(),
                operation="virustotal_analysis",
            )
        except Exception as exc:
            raise ScanError(f"Could not fetch analysis: {_reason(exc)}") from exc

    def poll_analysis(
        self,
        analysis_id: str,
        *,
        attempts: int = POLL_ATTEMPTS,
        delay: float = POLL_DELAY_SECONDS,
    ) -> dict[str, Any]:
        for attempt in range(1, attempts + 1):
            result = self.get_analysis(analysis_id)
            status = result.get("data", {}).get("attributes", {}).get("status")
            if status == "completed":
                return result
            log.info(
                "virustotal_analysis_pending",
                extra={"extra_fields": {"attempt": attempt, "status": status}},
            )
            if attempt < attempts:
                self._sleep(delay)
        raise ScanError("Analysis timed out")


def _reason(exc: BaseException) -> str:
    response = getattr(exc, "response", None)
    reason = getattr(response, "reason", None) if response is not None else None
    return str(reason or exc)[:200]


__all__ = ["VirusTotalClient", "ScanError", "MAX_FILE_BYTES"]
