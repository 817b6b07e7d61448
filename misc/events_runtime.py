from __future__ import annotations

import asyncio
import re
import signal
from datetime import datetime, timezone
from pathlib import Path

import discord

from misc.events import GroupAdmin
from misc.events import GroupBan
from misc.events import GroupDecrease
from misc.events import GroupIncrease
from misc.events import GroupRecall
from misc.events import MessageEvent
from misc.events import MessageSegment
from misc.events import Poke
from misc.events import SEGMENT_AT
from misc.events import SEGMENT_AUDIO
from misc.events import SEGMENT_IMAGE
from misc.events import SEGMENT_OTHER
from misc.events import SEGMENT_REPLY
from misc.events import SEGMENT_TEXT
from misc.runtime_deps import RuntimeDeps

MENTION_RE = re.compile(r"<@!?(\d+)>")
AUDIT_LOG_WINDOW_SEC = 30


def _best_display_name_for_user(user_obj) -> str | None:
    for attr in ("display_name", "global_name", "name"):
        value = getattr(user_obj, attr, None)
        if value:
            return str(value)
    return None


def _safe_filename(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]", "_", name or "file")


def _attachment_kind(attachment) -> str:
    content_type = str(getattr(attachment, "content_type", None) or "").lower()
    if content_type.startswith("image/"):
        return SEGMENT_IMAGE
    if content_type.startswith("audio/"):
        return SEGMENT_AUDIO
    return SEGMENT_OTHER


def _attachment_fetcher(attachment, target: Path):
    async def fetch() -> str:
        target.parent.mkdir(parents=True, exist_ok=True)
        await attachment.save(target)
        return str(target)

    return fetch


def message_event_from_discord(message, *, bot_user_id: int, attachments_dir: Path) -> MessageEvent:
    """Flatten a discord.Message into an engine MessageEvent; attachments download lazily."""
    segments: list[MessageSegment] = []

    reference = getattr(message, "reference", None)
    if reference is not None and getattr(reference, "message_id", None):
        segments.append(MessageSegment(kind=SEGMENT_REPLY, content=str(reference.message_id)))

    text = MENTION_RE.sub("", message.content or "").strip()
    if text:
        segments.append(MessageSegment(kind=SEGMENT_TEXT, content=text))

    mentions_bot = False
    for user in getattr(message, "mentions", None) or []:
        if int(user.id) == int(bot_user_id):
            mentions_bot = True
        segments.append(
            MessageSegment(
                kind=SEGMENT_AT,
                content=str(user.id),
                interpret=_best_display_name_for_user(user) or str(user.id),
            )
        )

    for attachment in getattr(message, "attachments", None) or []:
        kind = _attachment_kind(attachment)
        if kind == SEGMENT_OTHER:
            segments.append(MessageSegment(kind=kind, content=attachment.url, interpret=attachment.filename))
            continue
        target = attachments_dir / f"{message.id}_{attachment.id}_{_safe_filename(attachment.filename)}"
        segments.append(MessageSegment(kind=kind, fetch=_attachment_fetcher(attachment, target)))

    author = message.author
    return MessageEvent(
        group_id=int(message.guild.id),
        message_id=int(message.id),
        sender_id=int(author.id),
        segments=segments,
        time=message.created_at or datetime.now(timezone.utc),
        sender_card=str(getattr(author, "nick", None) or ""),
        sender_nickname=str(getattr(author, "global_name", None) or getattr(author, "name", "") or ""),
        mentions_bot=mentions_bot,
    )


def timeout_change(before, after, now: datetime) -> GroupBan | None:
    """Discord timeouts are the closest thing to a group ban."""
    old = getattr(before, "timed_out_until", None)
    new = getattr(after, "timed_out_until", None)
    if new is not None and new > now and new != old:
        return GroupBan(
            group_id=int(after.guild.id),
            user_id=int(after.id),
            sub_type="ban",
            duration=max(1, int((new - now).total_seconds())),
        )
    if old is not None and old > now and (new is None or new <= now):
        return GroupBan(group_id=int(after.guild.id), user_id=int(after.id), sub_type="lift_ban")
    return None


def admin_change(before, after) -> GroupAdmin | None:
    was_admin = bool(before.guild_permissions.administrator)
    is_admin = bool(after.guild_permissions.administrator)
    if was_admin == is_admin:
        return None
    return GroupAdmin(
        group_id=int(after.guild.id),
        user_id=int(after.id),
        sub_type="set" if is_admin else "unset",
    )


async def _recent_audit_actor(guild, action, target_id: int) -> int | None:
    try:
        async for entry in guild.audit_logs(limit=5, action=action):
            target = getattr(entry, "target", None)
            if target is None or int(getattr(target, "id", 0)) != int(target_id):
                continue
            age = (datetime.now(timezone.utc) - entry.created_at).total_seconds()
            if age <= AUDIT_LOG_WINDOW_SEC and entry.user is not None:
                return int(entry.user.id)
    except (discord.Forbidden, discord.HTTPException) as e:
        print(f"[Audit] lookup failed guild={guild.id}: {e}")
    return None


def register_runtime_events(bot: discord.Client, *, deps: RuntimeDeps) -> None:
    def session_for(guild_id: int | None, channel_id: int | None = None):
        session = deps.registry.get(guild_id)
        if session is None:
            return None
        if channel_id is not None and session.channel_id and int(channel_id) != session.channel_id:
            return None
        return session

    def install_reload_signal() -> None:
        loop = asyncio.get_running_loop()

        def _reload() -> None:
            asyncio.create_task(deps.reload_config())

        try:
            loop.add_signal_handler(signal.SIGHUP, _reload)
            print("[CFG] SIGHUP reloads group configuration")
        except (NotImplementedError, AttributeError, RuntimeError) as e:
            print(f"[CFG] config reload signal unavailable: {e}")

    @bot.event
    async def on_ready():
        print(f"Momo is online as {bot.user}")
        if getattr(bot, "_monitors_started", False):
            return
        bot._monitors_started = True
        deps.registry.start_monitors(deps.monitor_factory)
        install_reload_signal()

    @bot.event
    async def on_message(message: discord.Message):
        if message.guild is None:
            return
        if session_for(message.guild.id, message.channel.id) is None:
            return
        # our own messages are logged by the messenger
        if int(message.author.id) == deps.platform.bot_id:
            return
        event = message_event_from_discord(
            message,
            bot_user_id=deps.platform.bot_id,
            attachments_dir=deps.attachments_dir,
        )
        await deps.scheduler.ingest(event)

    @bot.event
    async def on_member_join(member: discord.Member):
        if session_for(member.guild.id) is None or member.bot:
            return
        await deps.scheduler.ingest(GroupIncrease(group_id=int(member.guild.id), user_id=int(member.id)))

    @bot.event
    async def on_member_remove(member: discord.Member):
        if session_for(member.guild.id) is None:
            return
        if int(member.id) == deps.platform.bot_id:
            await deps.scheduler.ingest(
                GroupDecrease(group_id=int(member.guild.id), user_id=int(member.id), sub_type="kick_me")
            )
            return
        operator_id = await _recent_audit_actor(member.guild, discord.AuditLogAction.kick, member.id)
        await deps.scheduler.ingest(
            GroupDecrease(
                group_id=int(member.guild.id),
                user_id=int(member.id),
                operator_id=operator_id,
                sub_type="kick" if operator_id is not None else "leave",
            )
        )

    @bot.event
    async def on_member_update(before: discord.Member, after: discord.Member):
        if session_for(after.guild.id) is None:
            return
        ban = timeout_change(before, after, datetime.now(timezone.utc))
        if ban is not None:
            ban.operator_id = await _recent_audit_actor(after.guild, discord.AuditLogAction.member_update, after.id)
            await deps.scheduler.ingest(ban)
        admin = admin_change(before, after)
        if admin is not None:
            await deps.scheduler.ingest(admin)

    @bot.event
    async def on_raw_message_delete(payload: discord.RawMessageDeleteEvent):
        if session_for(payload.guild_id, payload.channel_id) is None:
            return
        cached = payload.cached_message
        user_id = int(cached.author.id) if cached is not None else 0
        await deps.scheduler.ingest(
            GroupRecall(group_id=int(payload.guild_id), message_id=int(payload.message_id), user_id=user_id)
        )

    @bot.event
    async def on_raw_reaction_add(payload: discord.RawReactionActionEvent):
        if session_for(payload.guild_id, payload.channel_id) is None:
            return
        bot_id = deps.platform.bot_id
        if int(payload.user_id) == bot_id:
            return
        if int(getattr(payload, "message_author_id", None) or 0) != bot_id:
            return
        await deps.scheduler.ingest(Poke(group_id=int(payload.guild_id), user_id=int(payload.user_id), target_id=bot_id))
