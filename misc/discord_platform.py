from __future__ import annotations

from typing import TYPE_CHECKING

import discord

if TYPE_CHECKING:
    from session.registry import GroupSessionRegistry

DISCORD_MAX_MESSAGE_LEN = 1900  # keep under 2000 hard limit


def chunk_text(text: str, limit: int = DISCORD_MAX_MESSAGE_LEN) -> list[str]:
    text = text or ""
    if len(text) <= limit:
        return [text]

    chunks = []
    remaining = text

    while len(remaining) > limit:
        # Prefer splitting on paragraph, then newline, then space
        split_at = remaining.rfind("\n\n", 0, limit)
        if split_at == -1:
            split_at = remaining.rfind("\n", 0, limit)
        if split_at == -1:
            split_at = remaining.rfind(" ", 0, limit)
        if split_at == -1:
            split_at = limit

        chunk = remaining[:split_at].strip()
        if chunk:
            chunks.append(chunk)

        remaining = remaining[split_at:].strip()

    if remaining:
        chunks.append(remaining)

    return chunks


class DiscordPlatform:
    """Group-level send and member lookup on top of a discord.py client."""

    def __init__(self, bot: discord.Client, *, registry: "GroupSessionRegistry", bot_name: str) -> None:
        self.bot = bot
        self.registry = registry
        self._bot_name = bot_name

    @property
    def bot_id(self) -> int:
        return int(self.bot.user.id) if self.bot.user else 0

    @property
    def bot_name(self) -> str:
        if self._bot_name:
            return self._bot_name
        return str(self.bot.user.display_name) if self.bot.user else "bot"

    async def channel_for(self, group_id: int) -> discord.abc.Messageable:
        session = self.registry.get(group_id)
        if session is None or not session.channel_id:
            raise LookupError(f"group {group_id} has no channel configured")
        channel = self.bot.get_channel(session.channel_id)
        if channel is None:
            channel = await self.bot.fetch_channel(session.channel_id)
        return channel

    async def send_group(
        self,
        group_id: int,
        text: str,
        *,
        image_url: str | None = None,
        reply_to: int | None = None,
    ) -> int | None:
        channel = await self.channel_for(group_id)
        parts = chunk_text(text)
        first_id: int | None = None
        for idx, part in enumerate(parts):
            kwargs = {}
            if idx == 0 and reply_to:
                kwargs["reference"] = discord.MessageReference(
                    message_id=int(reply_to),
                    channel_id=int(channel.id),
                    fail_if_not_exists=False,
                )
            if idx == len(parts) - 1 and image_url:
                kwargs["embed"] = discord.Embed().set_image(url=image_url)
            sent = await channel.send(part or None, **kwargs)
            if first_id is None:
                first_id = int(sent.id)
        return first_id

    async def member_names(self, group_id: int, user_id: int) -> tuple[str, str]:
        """(guild nickname, global name or username)"""
        guild = self.bot.get_guild(int(group_id))
        member = guild.get_member(int(user_id)) if guild else None
        if member is None and guild is not None:
            try:
                member = await guild.fetch_member(int(user_id))
            except discord.NotFound:
                member = None
        if member is not None:
            return (member.nick or "", member.global_name or member.name or "")
        user = self.bot.get_user(int(user_id)) or await self.bot.fetch_user(int(user_id))
        return ("", user.global_name or user.name or "")
