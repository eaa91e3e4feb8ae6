from __future__ import annotations

import re
from typing import Optional, Sequence

_THANK_YOU_PATTERNS = (
    re.compile(r"\b(?:thank|thanks|thx|thankyou|ty)\b", re.IGNORECASE),
    re.compile(r"(?:^|\s)ty(?:\s|$)", re.IGNORECASE),
    re.compile(r"(?:^|\s)thx(?:\s|$)", re.IGNORECASE),
)

_SOLVED_MARKER = re.compile(r"\[solved\]", re.IGNORECASE)
_UNSOLVED_MARKER = re.compile(r"\[unsolved\]", re.IGNORECASE)
_USER_MENTION = re.compile(r"<@!?(\d+)>")


def is_thank_you(text: str) -> bool:
    return any(p.search(text or "") for p in _THANK_YOU_PATTERNS)


def waiting_reply_tags(
    current: Sequence[str],
    *,
    solved_tag: str,
    waiting_tag: str,
    author_is_owner: bool,
) -> Optional[list[str]]:
    """New tag list for the waiting-for-reply rule, or None when unchanged.

    The owner posting on an unsolved thread means it waits for a reply;
    anything else means it does not.
    """
    tags = list(current)
    want_waiting = author_is_owner and solved_tag not in tags
    if want_waiting and waiting_tag not in tags:
        return tags + [waiting_tag]
    if not want_waiting and waiting_tag in tags:
        return [t for t in tags if t != waiting_tag]
    return None


def solved_tags(current: Sequence[str], *, solved_tag: str, waiting_tag: str) -> Optional[list[str]]:
    tags = [t for t in current if t != waiting_tag]
    if solved_tag not in tags:
        tags.append(solved_tag)
    return None if tags == list(current) else tags


def unsolved_tags(current: Sequence[str], *, solved_tag: str) -> Optional[list[str]]:
    if solved_tag not in current:
        return None
    return [t for t in current if t != solved_tag]


def solved_name(name: str) -> str:
    return _UNSOLVED_MARKER.sub("[solved]", name, count=1)


def unsolved_name(name: str) -> str:
    return _SOLVED_MARKER.sub("[unsolved]", name, count=1)


def first_mention(text: Optional[str]) -> Optional[str]:
    match = _USER_MENTION.search(text or "")
    return match.group(1) if match else None


def is_blank(text: Optional[str]) -> bool:
    return not (text or "").strip()


__all__ = [
    "is_thank_you",
    "waiting_reply_tags",
    "solved_tags",
    "unsolved_tags",
    "solved_name",
    "unsolved_name",
    "first_mention",
    "is_blank",
]
