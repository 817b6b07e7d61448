from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from ingestion.models import LogRecord
from misc.errors import StorageFailure
from misc.events import SEGMENT_IMAGE
from misc.events import SEGMENT_TEXT

if TYPE_CHECKING:
    from ingestion.diagnostics import DiagnosticLog
    from ingestion.service import MessageLogStore


class GroupPlatform(Protocol):
    bot_id: int
    bot_name: str

    async def send_group(
        self,
        group_id: int,
        text: str,
        *,
        image_url: str | None = None,
        reply_to: int | None = None,
    ) -> int | None: ...

    async def member_names(self, group_id: int, user_id: int) -> tuple[str, str]: ...


class GroupMessenger:
    """Sends to a group and records what was sent in that group's log."""

    def __init__(self, platform: GroupPlatform, *, store: "MessageLogStore", diagnostics: "DiagnosticLog") -> None:
        self.platform = platform
        self.store = store
        self.diagnostics = diagnostics

    def outbound_records(self, message_id: int | None, text: str, image_url: str | None) -> list[LogRecord]:
        base = dict(
            message_id=int(message_id or 0),
            time=self.store.now_text(),
            sender_id=int(self.platform.bot_id),
            sender_name=self.platform.bot_name,
        )
        records: list[LogRecord] = []
        if text:
            records.append(LogRecord(seg_type=SEGMENT_TEXT, content=text, interpret="text", **base))
        if image_url:
            records.append(LogRecord(seg_type=SEGMENT_IMAGE, content=image_url, interpret=image_url, **base))
        return records

    async def send(
        self,
        group_id: int,
        text: str,
        *,
        image_url: str | None = None,
        reply_to: int | None = None,
    ) -> int | None:
        message_id = await self.platform.send_group(group_id, text, image_url=image_url, reply_to=reply_to)
        records = self.outbound_records(message_id, text, image_url)
        try:
            await self.store.append_records(group_id, records)
        except StorageFailure as e:
            await self.diagnostics.error(f"could not log outbound message group={group_id}: {e}")
        return message_id
