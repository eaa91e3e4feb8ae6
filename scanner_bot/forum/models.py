from __future__ import annotations

from datetime import datetime
from typing import Any, FrozenSet, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from scanner_bot.cards import Card


class ThreadInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    parent_id: Optional[str] = None
    owner_id: Optional[str] = None
    name: str = ""
    tags: Tuple[str, ...] = ()
    locked: bool = False

    def has_tag(self, tag_id: str) -> bool:
        return tag_id in self.tags


class MessageInfo(BaseModel):
    id: str
    channel_id: str
    author_id: str
    author_bot: bool = False
    content: str = ""
    cards: List[Card] = []
    created_at: datetime
    edited_at: Optional[datetime] = None


class InteractionInfo(BaseModel):
    """Who acted, where, and the transport handle used to answer them."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    actor_id: str
    role_ids: FrozenSet[str] = frozenset()
    channel_id: Optional[str] = None
    thread: Optional[ThreadInfo] = None
    handle: Any = Field(default=None, exclude=True, repr=False)


class ThreadCreated(BaseModel):
    kind: Literal["thread_created"] = "thread_created"
    thread: ThreadInfo


class MessagePosted(BaseModel):
    kind: Literal["message_posted"] = "message_posted"
    thread: Optional[ThreadInfo] = None
    message: MessageInfo


class ButtonActivated(BaseModel):
    kind: Literal["button_activated"] = "button_activated"
    custom_id: str
    message_id: Optional[str] = None
    interaction: InteractionInfo


class CommandInvoked(BaseModel):
    kind: Literal["command_invoked"] = "command_invoked"
    name: str
    interaction: InteractionInfo


ForumEvent = Union[ThreadCreated, MessagePosted, ButtonActivated, CommandInvoked]


__all__ = [
    "ThreadInfo",
    "MessageInfo",
    "InteractionInfo",
    "ThreadCreated",
    "MessagePosted",
    "ButtonActivated",
    "CommandInvoked",
    "ForumEvent",
]
