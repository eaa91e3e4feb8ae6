from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import discord

from scanner_bot.cards import Card, CardField, Colors, Control
from scanner_bot.forum.gateway import ThreadNotFound
from scanner_bot.forum.models import InteractionInfo, MessageInfo, ThreadInfo
from scanner_bot.utils.logging import get_logger

log = get_logger(__name__)

_COLOURS = {
    Colors.BLUE: discord.Colour.blue(),
    Colors.GREEN: discord.Colour.green(),
    Colors.YELLOW: discord.Colour.yellow(),
    Colors.ORANGE: discord.Colour.orange(),
    Colors.RED: discord.Colour.red(),
}
_COLOUR_NAMES = {colour.value: name for name, colour in _COLOURS.items()}


# ---- ingress: discord objects -> records ----
def thread_info(thread: discord.Thread) -> ThreadInfo:
    return ThreadInfo(
        id=str(thread.id),
        parent_id=str(thread.parent_id) if thread.parent_id else None,
        owner_id=str(thread.owner_id) if thread.owner_id else None,
        name=thread.name,
        tags=tuple(str(tag.id) for tag in thread.applied_tags),
        locked=bool(thread.locked),
    )


def card_from_embed(embed: discord.Embed) -> Card:
    colour = embed.colour.value if embed.colour is not None else None
    return Card(
        title=embed.title,
        description=embed.description,
        color=_COLOUR_NAMES.get(colour, Colors.BLUE),
        url=embed.url,
        fields=[CardField(name=f.name or "", value=f.value or "", inline=bool(f.inline)) for f in embed.fields],
        footer=embed.footer.text if embed.footer else None,
        timestamp=embed.timestamp,
    )


def message_info(message: discord.Message) -> MessageInfo:
    return MessageInfo(
        id=str(message.id),
        channel_id=str(message.channel.id),
        author_id=str(message.author.id),
        author_bot=bool(message.author.bot),
        content=message.content or "",
        cards=[card_from_embed(e) for e in message.embeds],
        created_at=message.created_at,
        edited_at=message.edited_at,
    )


def interaction_info(interaction: discord.Interaction) -> InteractionInfo:
    channel = interaction.channel
    roles = getattr(interaction.user, "roles", None) or []
    return InteractionInfo(
        id=str(interaction.id),
        actor_id=str(interaction.user.id),
        role_ids=frozenset(str(role.id) for role in roles),
        channel_id=str(interaction.channel_id) if interaction.channel_id else None,
        thread=thread_info(channel) if isinstance(channel, discord.Thread) else None,
        handle=interaction,
    )


# ---- egress: records -> discord objects ----
def render_card(card: Card) -> discord.Embed:
    embed = discord.Embed(
        title=card.title,
        description=card.description,
        colour=_COLOURS.get(card.color, discord.Colour.blue()),
        url=card.url,
        timestamp=card.timestamp,
    )
    for f in card.fields:
        embed.add_field(name=f.name, value=f.value, inline=f.inline)
    if card.footer:
        embed.set_footer(text=card.footer)
    return embed


def render_control(control: Control) -> discord.ui.View:
    view = discord.ui.View(timeout=control.ttl)
    view.add_item(
        discord.ui.Button(
            label=control.label, custom_id=control.custom_id, style=discord.ButtonStyle.secondary
        )
    )
    return view


class DiscordGateway:
    """ChatGateway backed by a live discord.py client."""

    def __init__(self, client: discord.Client):
        self.client = client

    @property
    def self_id(self) -> Optional[str]:
        return str(self.client.user.id) if self.client.user else None

    async def _thread(self, thread_id: str) -> discord.Thread:
        channel: Any = self.client.get_channel(int(thread_id))
        if channel is None:
            try:
                channel = await self.client.fetch_channel(int(thread_id))
            except discord.NotFound as exc:
                raise ThreadNotFound(thread_id) from exc
        if not isinstance(channel, discord.Thread):
            raise ThreadNotFound(thread_id)
        return channel

    async def list_active_threads(self, forum_id: str) -> List[ThreadInfo]:
        forum = self.client.get_channel(int(forum_id))
        if not isinstance(forum, discord.ForumChannel):
            log.warning("forum_channel_missing", extra={"extra_fields": {"forum_id": forum_id}})
            return []
        threads = await forum.guild.active_threads()
        return [thread_info(t) for t in threads if t.parent_id == forum.id]

    async def fetch_thread(self, thread_id: str) -> ThreadInfo:
        return thread_info(await self._thread(thread_id))

    async def fetch_messages(self, thread_id: str, limit: int) -> List[MessageInfo]:
        thread = await self._thread(thread_id)
        return [message_info(m) async for m in thread.history(limit=limit)]

    async def send(
        self,
        thread_id: str,
        *,
        content: Optional[str] = None,
        card: Optional[Card] = None,
        control: Optional[Control] = None,
        reply_to: Optional[str] = None,
    ) -> MessageInfo:
        thread = await self._thread(thread_id)
        kwargs: Dict[str, Any] = {}
        if content is not None:
            kwargs["content"] = content
        if card is not None:
            kwargs["embed"] = render_card(card)
        if control is not None:
            kwargs["view"] = render_control(control)
        if reply_to is not None:
            kwargs["reference"] = thread.get_partial_message(int(reply_to))
            kwargs["mention_author"] = False
        return message_info(await thread.send(**kwargs))

    async def edit(self, thread_id: str, message_id: str, *, card: Card) -> None:
        thread = await self._thread(thread_id)
        await thread.get_partial_message(int(message_id)).edit(embed=render_card(card))

    async def set_tags(self, thread_id: str, tags: Sequence[str]) -> None:
        thread = await self._thread(thread_id)
        forum = thread.parent
        if not isinstance(forum, discord.ForumChannel):
            raise ThreadNotFound(thread_id)
        applied = [forum.get_tag(int(t)) for t in tags]
        await thread.edit(applied_tags=[t for t in applied if t is not None])

    async def set_locked(self, thread_id: str, locked: bool) -> None:
        thread = await self._thread(thread_id)
        await thread.edit(locked=locked)

    async def set_name(self, thread_id: str, name: str) -> None:
        thread = await self._thread(thread_id)
        await thread.edit(name=name)

    async def reply(
        self,
        interaction: InteractionInfo,
        *,
        content: Optional[str] = None,
        card: Optional[Card] = None,
        private: bool = False,
    ) -> None:
        handle: discord.Interaction = interaction.handle
        kwargs: Dict[str, Any] = {"ephemeral": private}
        if content is not None:
            kwargs["content"] = content
        if card is not None:
            kwargs["embed"] = render_card(card)
        if handle.response.is_done():
            await handle.followup.send(**kwargs)
        else:
            await handle.response.send_message(**kwargs)


__all__ = [
    "DiscordGateway",
    "thread_info",
    "message_info",
    "interaction_info",
    "render_card",
    "card_from_embed",
]
