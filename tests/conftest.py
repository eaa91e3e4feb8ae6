from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

import pytest

from scanner_bot.cards import Card, Control
from scanner_bot.forum.gateway import ThreadNotFound
from scanner_bot.forum.models import InteractionInfo, MessageInfo, ThreadInfo
from scanner_bot.forum.store import ScheduleStore
from scanner_bot.forum.tracker import ThreadLifecycleTracker, TrackerConfig

START = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


class FakeTimer:
    def __init__(self, when: datetime, callback):
        self.when = when
        self._callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True

    def done(self) -> bool:
        return self.cancelled or self.fired

    async def wait(self) -> None:
        if not self.done():
            await self.fire()

    async def fire(self) -> None:
        self.fired = True
        await self._callback()


class FakeClock:
    """Time only moves when a test calls ``advance``."""

    def __init__(self, start: datetime = START):
        self.current = start
        self.timers: list[FakeTimer] = []

    def now(self) -> datetime:
        return self.current

    async def sleep(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)

    def call_later(self, delay: float, callback) -> FakeTimer:
        timer = FakeTimer(self.current + timedelta(seconds=max(delay, 0)), callback)
        self.timers.append(timer)
        return timer

    def pending(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.done()]

    async def advance(self, seconds: float) -> None:
        target = self.current + timedelta(seconds=seconds)
        while True:
            due = sorted((t for t in self.pending() if t.when <= target), key=lambda t: t.when)
            if not due:
                break
            timer = due[0]
            self.current = max(self.current, timer.when)
            await timer.fire()
        self.current = target


class FakeGateway:
    """In-memory chat platform that records every call."""

    def __init__(self, clock: FakeClock, self_id: str = "999"):
        self.clock = clock
        self._self_id = self_id
        self._ids = itertools.count(5000)
        self.threads: dict[str, ThreadInfo] = {}
        self.messages: dict[str, list[MessageInfo]] = {}
        self.sent: list[dict] = []
        self.edits: list[dict] = []
        self.replies: list[dict] = []
        self.tag_writes: list[tuple[str, list[str]]] = []
        self.lock_calls: list[str] = []
        self.fail_on: set[str] = set()

    # helpers for tests
    def add_thread(
        self,
        thread_id: str,
        *,
        owner_id: str = "owner",
        parent_id: str = "forum",
        name: str = "[unsolved] Printer on fire",
        tags: Sequence[str] = (),
        locked: bool = False,
    ) -> ThreadInfo:
        thread = ThreadInfo(
            id=thread_id,
            parent_id=parent_id,
            owner_id=owner_id,
            name=name,
            tags=tuple(tags),
            locked=locked,
        )
        self.threads[thread_id] = thread
        self.messages.setdefault(thread_id, [])
        return thread

    def post(
        self,
        thread_id: str,
        author_id: str,
        content: str = "",
        *,
        bot: bool = False,
        at: Optional[datetime] = None,
        cards: Sequence[Card] = (),
    ) -> MessageInfo:
        message = MessageInfo(
            id=str(next(self._ids)),
            channel_id=thread_id,
            author_id=author_id,
            author_bot=bot,
            content=content,
            cards=list(cards),
            created_at=at or self.clock.now(),
        )
        self.messages.setdefault(thread_id, []).append(message)
        return message

    def interaction(
        self, thread_id: Optional[str], actor_id: str, roles: Sequence[str] = ()
    ) -> InteractionInfo:
        return InteractionInfo(
            id=str(next(self._ids)),
            actor_id=actor_id,
            role_ids=frozenset(roles),
            channel_id=thread_id,
            thread=self.threads.get(thread_id) if thread_id else None,
        )

    def _check(self, operation: str) -> None:
        if operation in self.fail_on:
            raise RuntimeError(f"{operation} failed")

    # ChatGateway
    @property
    def self_id(self) -> Optional[str]:
        return self._self_id

    async def list_active_threads(self, forum_id: str) -> list[ThreadInfo]:
        return [t for t in self.threads.values() if t.parent_id == forum_id and not t.locked]

    async def fetch_thread(self, thread_id: str) -> ThreadInfo:
        try:
            return self.threads[thread_id]
        except KeyError as exc:
            raise ThreadNotFound(thread_id) from exc

    async def fetch_messages(self, thread_id: str, limit: int) -> list[MessageInfo]:
        if thread_id not in self.threads:
            raise ThreadNotFound(thread_id)
        return list(reversed(self.messages.get(thread_id, [])))[:limit]

    async def send(
        self,
        thread_id: str,
        *,
        content: Optional[str] = None,
        card: Optional[Card] = None,
        control: Optional[Control] = None,
        reply_to: Optional[str] = None,
    ) -> MessageInfo:
        self._check("send")
        message = self.post(
            thread_id, self._self_id, content or "", bot=True, cards=[card] if card else []
        )
        self.sent.append(
            {
                "thread_id": thread_id,
                "content": content,
                "card": card,
                "control": control,
                "reply_to": reply_to,
                "message": message,
            }
        )
        return message

    async def edit(self, thread_id: str, message_id: str, *, card: Card) -> None:
        self._check("edit")
        messages = self.messages[thread_id]
        for i, message in enumerate(messages):
            if message.id == message_id:
                messages[i] = message.model_copy(
                    update={"cards": [card], "edited_at": self.clock.now()}
                )
        self.edits.append({"thread_id": thread_id, "message_id": message_id, "card": card})

    async def set_tags(self, thread_id: str, tags: Sequence[str]) -> None:
        self._check("set_tags")
        self.tag_writes.append((thread_id, list(tags)))
        self.threads[thread_id] = self.threads[thread_id].model_copy(update={"tags": tuple(tags)})

    async def set_locked(self, thread_id: str, locked: bool) -> None:
        self._check("set_locked")
        self.lock_calls.append(thread_id)
        self.threads[thread_id] = self.threads[thread_id].model_copy(update={"locked": locked})

    async def set_name(self, thread_id: str, name: str) -> None:
        self._check("set_name")
        self.threads[thread_id] = self.threads[thread_id].model_copy(update={"name": name})

    async def reply(
        self,
        interaction: InteractionInfo,
        *,
        content: Optional[str] = None,
        card: Optional[Card] = None,
        private: bool = False,
    ) -> None:
        self.replies.append(
            {"actor_id": interaction.actor_id, "content": content, "card": card, "private": private}
        )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gateway(clock: FakeClock) -> FakeGateway:
    return FakeGateway(clock)


@pytest.fixture
def config() -> TrackerConfig:
    return TrackerConfig(
        forum_id="forum",
        solved_tag_id="solved",
        waiting_tag_id="waiting",
        moderator_role_id="mods",
    )


@pytest.fixture
def store(tmp_path):
    s = ScheduleStore(str(tmp_path / "forum.db"))
    s.init_schema()
    yield s
    s.close()


@pytest.fixture
def tracker(gateway, store, config, clock) -> ThreadLifecycleTracker:
    return ThreadLifecycleTracker(gateway, store, config, clock=clock)


@pytest.fixture
def in_sync():
    def _check(tracker: ThreadLifecycleTracker) -> bool:
        return set(tracker.active_timers) == set(tracker.pending_closures)

    return _check
