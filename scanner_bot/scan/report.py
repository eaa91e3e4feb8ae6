from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List

from scanner_bot.cards import Card, CardField, Colors
from scanner_bot.scan.ipqs import risk_level

_STAT_KEYS = ("harmless", "malicious", "suspicious", "undetected", "timeout")


def analysis_stats(analysis: Dict[str, Any]) -> Dict[str, int]:
    raw = analysis.get("data", {}).get("attributes", {}).get("stats", {}) or {}
    return {k: int(raw.get(k, 0) or 0) for k in _STAT_KEYS}


def detection_rate(stats: Dict[str, int]) -> float:
    total = sum(stats.values())
    if not total:
        return 0.0
    return round((stats["malicious"] + stats["suspicious"]) / total * 100, 1)


def verdict(stats: Dict[str, int]) -> tuple[str, str]:
    if stats["malicious"] > 0:
        return "High Risk", Colors.RED
    if stats["suspicious"] > 0:
        return "Suspicious", Colors.YELLOW
    return "Safe", Colors.GREEN


def top_detections(analysis: Dict[str, Any], limit: int = 10) -> List[str]:
    results = analysis.get("data", {}).get("attributes", {}).get("results", {}) or {}
    out = []
    for engine, result in results.items():
        category = (result or {}).get("category")
        if category in ("malicious", "suspicious"):
            out.append(f"• {engine}: {result.get('result') or category}")
    return out[:limit]


def virustotal_card(target: str, analysis: Dict[str, Any]) -> Card:
    stats = analysis_stats(analysis)
    level, color = verdict(stats)
    fields = [
        CardField(name="🎯 Target", value=target[:1024]),
        CardField(name="⚠️ Risk Level", value=level),
        CardField(
            name="📊 Detection Stats",
            value="\n".join(
                [
                    f"🔴 Malicious: {stats['malicious']}",
                    f"🟡 Suspicious: {stats['suspicious']}",
                    f"🟢 Clean: {stats['harmless']}",
                    f"⚪ Undetected: {stats['undetected']}",
                    f"⏳ Timeout: {stats['timeout']}",
                    f"📈 Detection Rate: {detection_rate(stats)}%",
                ]
            ),
        ),
    ]
    detections = top_detections(analysis)
    if detections:
        fields.append(CardField(name="🚨 Top Detections", value="\n".join(detections)))
    return Card(
        title="🔍 Scan Results",
        description="Analysis complete! Here are the results:",
        color=color,
        fields=fields,
        footer="Powered by VirusTotal",
        timestamp=datetime.now(timezone.utc),
    )


def ipqs_card(result: Dict[str, Any]) -> Card:
    score = int(result.get("risk_score", 0) or 0)
    level, color = risk_level(score)
    checks = [
        ("Malware", result.get("malware")),
        ("Phishing", result.get("phishing")),
        ("Suspicious", result.get("suspicious")),
        ("Spam", result.get("spamming")),
        ("Parked Domain", result.get("parking")),
    ]
    age = (result.get("domain_age") or {}).get("human") or "Unknown"
    return Card(
        title="🔍 URL Scan Results",
        description=f"Scan results for {result.get('domain', 'unknown domain')}",
        color=color,
        fields=[
            CardField(
                name="🎯 Risk Assessment",
                value=f"**Risk Level:** {level} (Score: {score}/100)\n**Domain Age:** {age}",
            ),
            CardField(
                name="🛡️ Security Checks",
                value="\n".join(f"{'⚠️' if flag else '✅'} {name}" for name, flag in checks),
                inline=True,
            ),
        ],
        footer="Powered by IPQualityScore",
        timestamp=datetime.now(timezone.utc),
    )


def pending_card(target: str) -> Card:
    return Card(
        title="🔍 Scan in Progress",
        description="Analyzing the provided target for potential threats...",
        fields=[CardField(name="🎯 Target", value=target[:1024]), CardField(name="⏳ Status", value="Scanning...")],
    )


def error_card(target: str, message: str) -> Card:
    return Card(
        title="❌ Scan Error",
        description="Failed to complete the scan",
        color=Colors.RED,
        fields=[CardField(name="🎯 Target", value=target[:1024]), CardField(name="❌ Error", value=message[:1024])],
    )
