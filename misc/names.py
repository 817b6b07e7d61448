from __future__ import annotations

from typing import Awaitable, Callable, Mapping

from config.loader import KnownMember


def resolve_display_name(
    known_members: Mapping[str, KnownMember] | None,
    user_id: int,
    card: str | None = None,
    nickname: str | None = None,
) -> str:
    """Configured name > group nickname > user nickname > raw id."""
    member = (known_members or {}).get(str(user_id))
    if member is not None and member.name:
        return member.name
    for candidate in (card, nickname):
        text = (candidate or "").strip()
        if text:
            return text
    return str(user_id)


async def lookup_display_name(
    member_names: Callable[[int, int], Awaitable[tuple[str, str]]],
    known_members: Mapping[str, KnownMember] | None,
    group_id: int,
    user_id: int | None,
) -> str:
    if user_id is None:
        return "某人"
    member = (known_members or {}).get(str(user_id))
    if member is not None and member.name:
        return member.name
    try:
        card, nickname = await member_names(group_id, user_id)
    except Exception as e:
        print(f"[Names] member lookup failed group={group_id} user={user_id}: {e}")
        card, nickname = "", ""
    return resolve_display_name(known_members, user_id, card, nickname)


def render_known_members(known_members: Mapping[str, KnownMember] | None) -> str:
    lines: list[str] = []
    for user_id, member in (known_members or {}).items():
        line = f"{user_id}: {member.name}"
        if member.aliases:
            line += f" (aka {', '.join(member.aliases)})"
        if member.description:
            line += f" - {member.description}"
        lines.append(line)
    return "\n".join(lines)
