from __future__ import annotations

from typing import Any
from urllib.parse import quote

from scanner_bot.cards import Colors
from scanner_bot.scan.virustotal import ScanError
from scanner_bot.utils.http import get_json

BASE_URL = "https://www.ipqualityscore.com/api/json/url"
STRICTNESS = 1


def risk_level(score: int) -> tuple[str, str]:
    if score >= 85:
        return "High Risk", Colors.RED
    if score >= 60:
        return "Medium Risk", Colors.ORANGE
    if score >= 30:
        return "Low Risk", Colors.YELLOW
    return "Safe", Colors.GREEN


class IPQSClient:
    """IPQualityScore malicious-URL lookups."""

    def __init__(self, api_key: str):
        if not api_key:
            raise ScanError("IPQualityScore API key is not configured")
        self.api_key = api_key

    def scan_url(self, url: str) -> dict[str, Any]:
        data, err = get_json(
            f"{BASE_URL}/{self.api_key}/{quote(url, safe='')}",
            params={"strictness": STRICTNESS},
        )
        if err or not data:
            raise ScanError(f"Failed to scan URL: {err or 'empty response'}")
        if not data.get("success"):
            raise ScanError(data.get("message") or "Failed to scan URL")
        return data


__all__ = ["IPQSClient", "risk_level"]
