from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable

SEGMENT_TEXT = "text"
SEGMENT_IMAGE = "image"
SEGMENT_AUDIO = "audio"
SEGMENT_AT = "at"
SEGMENT_REPLY = "reply"
SEGMENT_OTHER = "other"

ATTACHMENT_SEGMENTS = {SEGMENT_IMAGE, SEGMENT_AUDIO}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class MessageSegment:
    kind: str
    content: str = ""
    interpret: str | None = None
    # For image/audio: produces the local file path of the attachment.
    fetch: Callable[[], Awaitable[str]] | None = None


@dataclass(slots=True)
class MessageEvent:
    group_id: int
    message_id: int
    sender_id: int
    segments: list[MessageSegment] = field(default_factory=list)
    time: datetime = field(default_factory=utc_now)
    sender_card: str = ""
    sender_nickname: str = ""
    mentions_bot: bool = False

    @property
    def text(self) -> str:
        return "\n".join(s.content for s in self.segments if s.kind == SEGMENT_TEXT and s.content)


@dataclass(slots=True)
class GroupIncrease:
    group_id: int
    user_id: int
    operator_id: int | None = None
    sub_type: str = "approve"  # approve | invite
    time: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class GroupDecrease:
    group_id: int
    user_id: int
    operator_id: int | None = None
    sub_type: str = "leave"  # leave | kick | kick_me
    time: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class GroupAdmin:
    group_id: int
    user_id: int
    sub_type: str = "set"  # set | unset
    time: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class GroupBan:
    group_id: int
    user_id: int
    operator_id: int | None = None
    sub_type: str = "ban"  # ban | lift_ban
    duration: int = 0
    time: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class GroupRecall:
    group_id: int
    message_id: int
    user_id: int
    operator_id: int | None = None
    time: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class Poke:
    group_id: int
    user_id: int
    target_id: int
    time: datetime = field(default_factory=utc_now)


GroupEvent = MessageEvent | GroupIncrease | GroupDecrease | GroupAdmin | GroupBan | GroupRecall | Poke
