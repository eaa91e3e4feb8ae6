from __future__ import annotations

from typing import List, Optional, Protocol, Sequence

from scanner_bot.cards import Card, Control
from scanner_bot.forum.models import InteractionInfo, MessageInfo, ThreadInfo


class ThreadNotFound(LookupError):
    """The thread (or its channel) no longer exists on the platform."""


class ChatGateway(Protocol):
    """Operations the lifecycle tracker needs from the chat platform."""

    @property
    def self_id(self) -> Optional[str]: ...

    async def list_active_threads(self, forum_id: str) -> List[ThreadInfo]: ...

    async def fetch_thread(self, thread_id: str) -> ThreadInfo: ...

    async def fetch_messages(self, thread_id: str, limit: int) -> List[MessageInfo]:
        """Most recent first."""
        ...

    async def send(
        self,
        thread_id: str,
        *,
        content: Optional[str] = None,
        card: Optional[Card] = None,
        control: Optional[Control] = None,
        reply_to: Optional[str] = None,
    ) -> MessageInfo: ...

    async def edit(self, thread_id: str, message_id: str, *, card: Card) -> None: ...

    async def set_tags(self, thread_id: str, tags: Sequence[str]) -> None: ...

    async def set_locked(self, thread_id: str, locked: bool) -> None: ...

    async def set_name(self, thread_id: str, name: str) -> None: ...

    async def reply(
        self,
        interaction: InteractionInfo,
        *,
        content: Optional[str] = None,
        card: Optional[Card] = None,
        private: bool = False,
    ) -> None: ...


__all__ = ["ChatGateway", "ThreadNotFound"]
