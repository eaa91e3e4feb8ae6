from __future__ import annotations

from collections.abc import Awaitable
from datetime import datetime, timedelta
from functools import partial
from typing import Any, Dict, Optional, Set

from pydantic import BaseModel

from scanner_bot.cards import Card, CardField, Colors, Control
from scanner_bot.forum import rules
from scanner_bot.forum.gateway import ChatGateway, ThreadNotFound
from scanner_bot.forum.models import (
    ButtonActivated,
    CommandInvoked,
    ForumEvent,
    InteractionInfo,
    MessageInfo,
    MessagePosted,
    ThreadCreated,
    ThreadInfo,
)
from scanner_bot.forum.store import ScheduleStore, ScheduleStoreError
from scanner_bot.utils.clock import Clock, SystemClock, Timer
from scanner_bot.utils.logging import get_logger
from scanner_bot.utils.metrics import record_forum

log = get_logger(__name__)

STATUS_TITLE = "Post Marked as Solved"
CONTROL_PREFIX = "mark_solved:"

INTAKE_CARD = Card(
    title="Hello, please answer these questions if you haven't already, so we can help you faster.",
    description=(
        "• What exactly is your question or the problem you're experiencing?\n"
        "• What have you already tried?\n"
        "• What are you trying to do / what is your overall goal?\n"
        "• If possible, please include a screenshot or screen recording of your setup."
    ),
    color=Colors.BLUE,
)


def stamp(value: datetime, style: str = "f") -> str:
    """Discord timestamp markup, rendered in each reader's timezone."""
    return f"<t:{int(value.timestamp())}:{style}>"


class TrackerConfig(BaseModel):
    forum_id: str
    solved_tag_id: str
    waiting_tag_id: str
    moderator_role_id: str
    solved_command: str = "/solved"
    unsolved_command: str = "/unsolved"

    # seconds
    close_delay: float = 60 * 60
    inactivity_threshold: float = 24 * 60 * 60
    grace_period: float = 12 * 60 * 60
    control_lifetime: float = 24 * 60 * 60
    settle_delay: float = 1.0
    shutdown_drain: float = 10.0
    stale_after: float = 24 * 60 * 60

    recent_window: int = 10
    lookup_window: int = 50

    @classmethod
    def from_settings(cls, settings: Any) -> "TrackerConfig":
        return cls(
            forum_id=str(settings.FORUM_CHANNEL_ID),
            solved_tag_id=str(settings.SOLVED_TAG_ID),
            waiting_tag_id=str(settings.WAITING_REPLY_TAG_ID),
            moderator_role_id=str(settings.MODERATOR_ROLE_ID),
            solved_command=settings.SOLVED_COMMAND_MENTION,
            unsolved_command=settings.UNSOLVED_COMMAND_MENTION,
        )


class WarningControl(BaseModel):
    thread_id: str
    message_id: str
    expires_at: datetime


class ThreadLifecycleTracker:
    """Solved/unsolved lifecycle for the threads of one support forum.

    Owns the scheduled auto-lock timers and mirrors them in the schedule
    store so they can be re-armed after a restart. ``active_timers`` and
    ``pending_closures`` always hold the same keys.
    """

    def __init__(
        self,
        gateway: ChatGateway,
        store: ScheduleStore,
        config: TrackerConfig,
        clock: Optional[Clock] = None,
    ):
        self.gateway = gateway
        self.store = store
        self.config = config
        self.clock: Clock = clock or SystemClock()

        self.active_timers: Dict[str, Timer] = {}
        self.pending_closures: Dict[str, datetime] = {}
        self.inactivity_warnings: Dict[str, bool] = {}

        self._grace_timers: Dict[str, Timer] = {}
        self._controls: Dict[str, WarningControl] = {}
        self._solving: Set[str] = set()
        self._closed = False
        self._sweep_timer: Optional[Timer] = self._arm_sweep()

    # ---- startup / shutdown ----
    async def initialize(self) -> int:
        """Create the table, drop stale rows and re-arm future ones. Safe to repeat.

        Rows already past due stay in the store until the stale cleanup
        removes them; they are not locked on startup.
        """
        self.store.init_schema()
        now = self.clock.now()
        removed = self.store.delete_older_than(now - timedelta(seconds=self.config.stale_after))
        rows = [r for r in self.store.list_all() if r.scheduled_time > now]
        for row in rows:
            self._arm_close(row.thread_id, row.scheduled_time)
        log.info(
            "forum_tracker_initialized",
            extra={"extra_fields": {"restored": len(rows), "stale_removed": removed}},
        )
        return len(rows)

    async def shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._sweep_timer is not None:
            self._sweep_timer.cancel()
            self._sweep_timer = None
        for timer in self._grace_timers.values():
            timer.cancel()
        self._grace_timers.clear()

        now = self.clock.now()
        draining: list[Timer] = []
        for thread_id, timer in list(self.active_timers.items()):
            when = self.pending_closures.get(thread_id, timer.when)
            if (when - now).total_seconds() <= self.config.shutdown_drain:
                draining.append(timer)
                continue
            timer.cancel()
            self._disarm_close(thread_id, cancel=False)
            try:
                self.store.upsert(thread_id, when)
            except ScheduleStoreError:
                log.error("shutdown_persist_failed", extra={"extra_fields": {"thread_id": thread_id}})
        for timer in draining:
            await timer.wait()
        self.store.close()
        log.info(
            "forum_tracker_stopped", extra={"extra_fields": {"drained": len(draining)}}
        )

    # ---- event entry point ----
    async def dispatch(self, event: ForumEvent) -> None:
        try:
            if isinstance(event, ThreadCreated):
                await self.on_thread_created(event.thread)
            elif isinstance(event, MessagePosted):
                await self.on_message_posted(event.thread, event.message)
            elif isinstance(event, ButtonActivated):
                await self.handle_control(event)
            elif isinstance(event, CommandInvoked):
                handler = {
                    "solved": self.handle_solved_command,
                    "unsolved": self.handle_unsolved_command,
                }.get(event.name)
                if handler is None:
                    log.warning("unknown_forum_command", extra={"extra_fields": {"name": event.name}})
                    return
                await handler(event.interaction)
        except Exception as exc:
            log.exception(
                "forum_event_failed",
                extra={"extra_fields": {"kind": event.kind, "error": exc.__class__.__name__}},
            )
            if isinstance(event, (ButtonActivated, CommandInvoked)):
                await self._best_effort(
                    self.gateway.reply(
                        event.interaction,
                        content="An error occurred while processing your command.",
                        private=True,
                    ),
                    "reply_failure",
                )

    # ---- chat events ----
    async def on_thread_created(self, thread: ThreadInfo) -> None:
        if thread.parent_id != self.config.forum_id:
            return
        # The opening post lands shortly after the thread itself.
        await self.clock.sleep(self.config.settle_delay)
        messages = await self.gateway.fetch_messages(thread.id, 1)
        first = messages[0] if messages else None
        if first is None:
            return
        if rules.is_blank(first.content):
            await self._best_effort(
                self.gateway.send(thread.id, card=INTAKE_CARD), "send_intake", thread.id
            )
        await self._update_waiting_tag(thread, first.author_id)
        record_forum("thread_created")

    async def on_message_posted(self, thread: Optional[ThreadInfo], message: MessageInfo) -> None:
        if thread is None or thread.parent_id != self.config.forum_id:
            return
        await self._update_waiting_tag(thread, message.author_id)
        if message.author_id == self.gateway.self_id or message.author_id != thread.owner_id:
            return
        self._clear_warning(thread.id)
        if rules.is_thank_you(message.content) and not thread.has_tag(self.config.solved_tag_id):
            await self._best_effort(
                self.gateway.send(
                    thread.id,
                    content=f"-# Command suggestion: {self.config.solved_command}",
                    reply_to=message.id,
                ),
                "send_suggestion",
                thread.id,
            )

    async def _update_waiting_tag(self, thread: ThreadInfo, author_id: Optional[str]) -> None:
        new_tags = rules.waiting_reply_tags(
            thread.tags,
            solved_tag=self.config.solved_tag_id,
            waiting_tag=self.config.waiting_tag_id,
            author_is_owner=author_id is not None and author_id == thread.owner_id,
        )
        if new_tags is not None:
            await self._best_effort(
                self.gateway.set_tags(thread.id, new_tags), "set_waiting_tag", thread.id
            )

    def _clear_warning(self, thread_id: str) -> None:
        self.inactivity_warnings.pop(thread_id, None)
        grace = self._grace_timers.pop(thread_id, None)
        if grace is not None:
            grace.cancel()

    # ---- inactivity ----
    def _arm_sweep(self) -> Timer:
        return self.clock.call_later(self.config.inactivity_threshold, self._sweep_tick)

    async def _sweep_tick(self) -> None:
        if self._closed:
            return
        self._sweep_timer = self._arm_sweep()
        self._prune_controls()
        await self.sweep_inactive_threads()

    def _prune_controls(self) -> int:
        now = self.clock.now()
        expired = [cid for cid, c in self._controls.items() if now >= c.expires_at]
        for custom_id in expired:
            del self._controls[custom_id]
        return len(expired)

    async def sweep_inactive_threads(self) -> int:
        try:
            threads = await self.gateway.list_active_threads(self.config.forum_id)
        except Exception as exc:
            log.warning("inactivity_sweep_failed", extra={"extra_fields": {"error": str(exc)[:200]}})
            return 0
        warned = 0
        for thread in threads:
            if (
                thread.locked
                or thread.id in self.inactivity_warnings
                or thread.has_tag(self.config.solved_tag_id)
                or thread.id in self.pending_closures
            ):
                continue
            try:
                if await self._owner_went_quiet(thread):
                    await self.send_inactivity_warning(thread)
                    warned += 1
            except Exception as exc:
                log.warning(
                    "inactivity_check_failed",
                    extra={"extra_fields": {"thread_id": thread.id, "error": str(exc)[:200]}},
                )
        log.info("inactivity_sweep_done", extra={"extra_fields": {"threads": len(threads), "warned": warned}})
        return warned

    async def _owner_went_quiet(self, thread: ThreadInfo) -> bool:
        messages = await self.gateway.fetch_messages(thread.id, self.config.recent_window)
        last_human = next((m for m in messages if not m.author_bot), None)
        last_owner = next((m for m in messages if m.author_id == thread.owner_id), None)
        if last_human is None or last_owner is None:
            return False
        if last_human.author_id == thread.owner_id:
            return False
        quiet_for = (self.clock.now() - last_owner.created_at).total_seconds()
        return quiet_for >= self.config.inactivity_threshold

    async def send_inactivity_warning(self, thread: ThreadInfo) -> MessageInfo:
        now = self.clock.now()
        deadline = now + timedelta(seconds=self.config.grace_period)
        hours = int(self.config.inactivity_threshold // 3600)
        card = Card(
            color=Colors.YELLOW,
            description=(
                f"Hey <@{thread.owner_id}>, it seems like your last message was sent more than "
                f"{hours} hours ago.\nIf we don't hear back from you by {stamp(deadline, 'f')} "
                f"({stamp(deadline, 'R')}), we'll assume the issue is resolved and mark your "
                "post as solved."
            ),
        )
        custom_id = f"{CONTROL_PREFIX}{thread.id}"
        message = await self.gateway.send(
            thread.id,
            card=card,
            control=Control(
                custom_id=custom_id,
                label="Issue already solved? Close post now",
                ttl=self.config.control_lifetime,
            ),
        )
        self.inactivity_warnings[thread.id] = True
        self._controls[custom_id] = WarningControl(
            thread_id=thread.id,
            message_id=message.id,
            expires_at=now + timedelta(seconds=self.config.control_lifetime),
        )
        previous = self._grace_timers.pop(thread.id, None)
        if previous is not None:
            previous.cancel()
        self._grace_timers[thread.id] = self.clock.call_later(
            self.config.grace_period, partial(self._grace_expired, thread.id, message.id)
        )
        record_forum("inactivity_warning")
        log.info("inactivity_warning_sent", extra={"extra_fields": {"thread_id": thread.id}})
        return message

    async def _grace_expired(self, thread_id: str, warning_id: str) -> None:
        self._grace_timers.pop(thread_id, None)
        try:
            thread = await self.gateway.fetch_thread(thread_id)
        except ThreadNotFound:
            log.info("grace_thread_missing", extra={"extra_fields": {"thread_id": thread_id}})
            self.inactivity_warnings.pop(thread_id, None)
            return
        if (
            thread.locked
            or thread.has_tag(self.config.solved_tag_id)
            or thread_id in self.pending_closures
            or thread_id in self._solving
        ):
            return
        self._solving.add(thread_id)
        try:
            scheduled = await self.mark_solved(thread_id, actor_id=None)
        except Exception as exc:
            log.exception(
                "auto_solve_failed",
                extra={"extra_fields": {"thread_id": thread_id, "error": exc.__class__.__name__}},
            )
            return
        finally:
            self._solving.discard(thread_id)
        record_forum("auto_solved")
        await self._best_effort(
            self.gateway.send(
                thread_id,
                content=(
                    "No response received. This post has been automatically marked as solved "
                    f"and will be closed {stamp(scheduled, 'R')}."
                ),
                reply_to=warning_id,
            ),
            "announce_auto_solve",
            thread_id,
        )

    async def handle_control(self, event: ButtonActivated) -> None:
        interaction = event.interaction
        control = self._controls.get(event.custom_id)
        if control is None or self.clock.now() >= control.expires_at:
            self._controls.pop(event.custom_id, None)
            await self.gateway.reply(
                interaction,
                content=f"This button has expired. Use {self.config.solved_command} instead.",
                private=True,
            )
            return
        thread = interaction.thread
        if thread is None or thread.id != control.thread_id:
            thread = await self.gateway.fetch_thread(control.thread_id)
        if not self._may_resolve(interaction, thread):
            await self.gateway.reply(
                interaction,
                content="Only the original poster or moderators can mark a post as solved!",
                private=True,
            )
            return
        if await self._reply_if_pending(interaction, thread.id):
            return
        if await self._solve_and_reply(interaction, thread.id) is not None:
            self._controls.pop(event.custom_id, None)

    # ---- commands ----
    async def handle_solved_command(self, interaction: InteractionInfo) -> None:
        thread = await self._command_thread(interaction)
        if thread is None:
            return
        if await self._reply_if_pending(interaction, thread.id):
            return
        if not self._may_resolve(interaction, thread):
            await self.gateway.reply(
                interaction,
                content="Only the original poster or moderators can mark a post as solved!",
                private=True,
            )
            return
        await self._solve_and_reply(interaction, thread.id)

    async def handle_unsolved_command(self, interaction: InteractionInfo) -> None:
        thread = await self._command_thread(interaction)
        if thread is None:
            return
        thread = await self.gateway.fetch_thread(thread.id)
        if thread.locked:
            await self._reply_closed_lookup(interaction, thread)
            return
        if not self._may_resolve(interaction, thread):
            await self.gateway.reply(
                interaction,
                content="Only the original poster or moderators can remove the solved status!",
                private=True,
            )
            return
        try:
            self.store.delete(thread.id)
        except ScheduleStoreError:
            await self.gateway.reply(
                interaction,
                content="I couldn't cancel the scheduled closure. Please try again in a moment.",
                private=True,
            )
            return
        self._disarm_close(thread.id)
        self.inactivity_warnings.pop(thread.id, None)

        new_name = rules.unsolved_name(thread.name)
        if new_name != thread.name:
            await self._best_effort(self.gateway.set_name(thread.id, new_name), "rename", thread.id)
        await self._best_effort(
            self._revert_status(thread.id, interaction.actor_id), "revert_status", thread.id
        )
        new_tags = rules.unsolved_tags(thread.tags, solved_tag=self.config.solved_tag_id)
        if new_tags is not None:
            await self.gateway.set_tags(thread.id, new_tags)

        record_forum("unsolved")
        log.info(
            "thread_unsolved",
            extra={"extra_fields": {"thread_id": thread.id, "actor_id": interaction.actor_id}},
        )
        await self.gateway.reply(
            interaction,
            card=Card(
                title="🔄 Solved Status Removed",
                description=(
                    f"The solved tag has been removed from this post by <@{interaction.actor_id}>."
                ),
                color=Colors.BLUE,
                timestamp=self.clock.now(),
            ),
        )

    async def _command_thread(self, interaction: InteractionInfo) -> Optional[ThreadInfo]:
        thread = interaction.thread
        if thread is None:
            await self.gateway.reply(
                interaction, content="This command can only be used in forum posts!", private=True
            )
            return None
        if thread.parent_id != self.config.forum_id:
            await self.gateway.reply(
                interaction, content="This command can only be used in the help forum!", private=True
            )
            return None
        return thread

    def _may_resolve(self, interaction: InteractionInfo, thread: ThreadInfo) -> bool:
        return (
            interaction.actor_id == thread.owner_id
            or self.config.moderator_role_id in interaction.role_ids
        )

    async def _reply_if_pending(self, interaction: InteractionInfo, thread_id: str) -> bool:
        scheduled = self.pending_closures.get(thread_id)
        if scheduled is not None:
            await self.gateway.reply(
                interaction,
                content=(
                    "This post is already marked as solved and will be closed "
                    f"{stamp(scheduled, 'R')}."
                ),
                private=True,
            )
            return True
        if thread_id in self._solving:
            await self.gateway.reply(
                interaction, content="This post is already being marked as solved.", private=True
            )
            return True
        return False

    async def _solve_and_reply(
        self, interaction: InteractionInfo, thread_id: str
    ) -> Optional[datetime]:
        self._solving.add(thread_id)
        try:
            scheduled = await self.mark_solved(thread_id, actor_id=interaction.actor_id)
        except ScheduleStoreError:
            await self.gateway.reply(
                interaction,
                content="I couldn't schedule this post for closing. Please try again in a moment.",
                private=True,
            )
            return None
        finally:
            self._solving.discard(thread_id)
        await self.gateway.reply(
            interaction,
            content=(
                "Post has been marked as solved and will be closed "
                f"{stamp(scheduled, 'R')} ({stamp(scheduled, 'f')})."
            ),
        )
        return scheduled

    async def _reply_closed_lookup(self, interaction: InteractionInfo, thread: ThreadInfo) -> None:
        status = await self._find_status_message(thread.id, self.config.lookup_window)
        if status is not None:
            solver = rules.first_mention(status.cards[0].description)
            if solver:
                closed_at = status.edited_at or status.created_at
                await self.gateway.reply(
                    interaction,
                    content=(
                        f"<@{solver}> has already marked this post as solved and it was closed "
                        f"{stamp(closed_at, 'R')}."
                    ),
                    private=True,
                )
                return
        await self.gateway.reply(
            interaction,
            content="This post has already been marked as solved and closed.",
            private=True,
        )

    # ---- solved transition ----
    async def mark_solved(self, thread_id: str, *, actor_id: Optional[str]) -> datetime:
        """Tag the thread solved and schedule its lock; returns the lock time.

        Raises ``ScheduleStoreError`` when the schedule could not be written,
        in which case no timer is armed.
        """
        thread = await self.gateway.fetch_thread(thread_id)
        new_tags = rules.solved_tags(
            thread.tags,
            solved_tag=self.config.solved_tag_id,
            waiting_tag=self.config.waiting_tag_id,
        )
        if new_tags is not None:
            await self.gateway.set_tags(thread_id, new_tags)
        new_name = rules.solved_name(thread.name)
        if new_name != thread.name:
            await self._best_effort(self.gateway.set_name(thread_id, new_name), "rename", thread_id)

        scheduled = self.clock.now() + timedelta(seconds=self.config.close_delay)
        self.store.upsert(thread_id, scheduled)
        self._arm_close(thread_id, scheduled)

        grace = self._grace_timers.pop(thread_id, None)
        if grace is not None:
            grace.cancel()
        await self._best_effort(
            self._publish_solved_status(thread_id, actor_id, scheduled), "status_solved", thread_id
        )
        record_forum("solved")
        log.info(
            "thread_solved",
            extra={
                "extra_fields": {
                    "thread_id": thread_id,
                    "actor_id": actor_id,
                    "scheduled_time": scheduled.isoformat(),
                }
            },
        )
        return scheduled

    async def _publish_solved_status(
        self, thread_id: str, actor_id: Optional[str], scheduled: datetime
    ) -> None:
        if actor_id:
            description = f"This post has been marked as solved by <@{actor_id}>!"
        else:
            description = "This post was automatically marked as solved after no response."
        card = Card(
            title=STATUS_TITLE,
            description=f"{description}\nUse {self.config.unsolved_command} to remove this tag.",
            color=Colors.GREEN,
            fields=[
                CardField(
                    name="🔒 Post awaiting automatic closure",
                    value=f"This post will be closed {stamp(scheduled, 'R')} ({stamp(scheduled, 'f')}).",
                )
            ],
            timestamp=self.clock.now(),
        )
        existing = await self._find_status_message(thread_id, self.config.recent_window)
        if existing is not None:
            await self.gateway.edit(thread_id, existing.id, card=card)
        else:
            await self.gateway.send(thread_id, card=card)

    async def _revert_status(self, thread_id: str, actor_id: str) -> None:
        existing = await self._find_status_message(thread_id, self.config.recent_window)
        if existing is None:
            return
        now = self.clock.now()
        card = existing.cards[0].with_state(
            color=Colors.BLUE,
            fields=[
                CardField(
                    name="Solved Status Removed",
                    value=f"<@{actor_id}> removed the solved status {stamp(now, 'R')}.",
                )
            ],
            timestamp=now,
        )
        await self.gateway.edit(thread_id, existing.id, card=card)

    async def _find_status_message(self, thread_id: str, limit: int) -> Optional[MessageInfo]:
        self_id = self.gateway.self_id
        if not self_id:
            return None
        for message in await self.gateway.fetch_messages(thread_id, limit):
            if message.author_id == self_id and message.cards and message.cards[0].title == STATUS_TITLE:
                return message
        return None

    # ---- close timers ----
    def _arm_close(self, thread_id: str, when: datetime) -> None:
        existing = self.active_timers.pop(thread_id, None)
        if existing is not None:
            existing.cancel()
        delay = (when - self.clock.now()).total_seconds()
        self.active_timers[thread_id] = self.clock.call_later(
            delay, partial(self._close_thread, thread_id, when)
        )
        self.pending_closures[thread_id] = when

    def _disarm_close(self, thread_id: str, *, cancel: bool = True) -> None:
        timer = self.active_timers.pop(thread_id, None)
        self.pending_closures.pop(thread_id, None)
        if timer is not None and cancel:
            timer.cancel()

    async def _close_thread(self, thread_id: str, when: datetime) -> None:
        try:
            try:
                thread = await self.gateway.fetch_thread(thread_id)
            except ThreadNotFound:
                log.warning("scheduled_close_thread_missing", extra={"extra_fields": {"thread_id": thread_id}})
                return
            if not thread.locked:
                await self.gateway.set_locked(thread_id, True)
            now = self.clock.now()
            closed = [
                CardField(
                    name="Post Marked as Solved and is Now Closed",
                    value=f"This post was closed {stamp(now, 'R')} ({stamp(now, 'f')}).",
                )
            ]
            status = await self._find_status_message(thread_id, self.config.recent_window)
            if status is not None:
                await self.gateway.edit(
                    thread_id,
                    status.id,
                    card=status.cards[0].with_state(color=Colors.RED, fields=closed, timestamp=now),
                )
            else:
                await self.gateway.send(
                    thread_id,
                    card=Card(
                        title=STATUS_TITLE,
                        description="This post has been closed.",
                        color=Colors.RED,
                        fields=closed,
                        timestamp=now,
                    ),
                )
            record_forum("closed")
            log.info("thread_closed", extra={"extra_fields": {"thread_id": thread_id}})
        except Exception as exc:
            log.exception(
                "scheduled_close_failed",
                extra={"extra_fields": {"thread_id": thread_id, "error": exc.__class__.__name__}},
            )
        finally:
            # A newer schedule may have replaced this one while we were awaiting.
            if self.pending_closures.get(thread_id) == when:
                self._disarm_close(thread_id, cancel=False)
                self.inactivity_warnings.pop(thread_id, None)
                try:
                    self.store.delete(thread_id)
                except ScheduleStoreError:
                    log.warning(
                        "scheduled_close_row_left", extra={"extra_fields": {"thread_id": thread_id}}
                    )

    async def _best_effort(self, action: Awaitable[Any], operation: str, thread_id: str = "") -> bool:
        try:
            await action
            return True
        except Exception as exc:
            log.warning(
                "forum_action_failed",
                extra={
                    "extra_fields": {
                        "operation": operation,
                        "thread_id": thread_id,
                        "error": str(exc)[:200],
                    }
                },
            )
            return False


__all__ = [
    "ThreadLifecycleTracker",
    "TrackerConfig",
    "WarningControl",
    "STATUS_TITLE",
    "CONTROL_PREFIX",
    "stamp",
]
