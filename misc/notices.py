from __future__ import annotations

from typing import TYPE_CHECKING

from ingestion.models import LogRecord
from misc.errors import StorageFailure
from misc.events import GroupAdmin
from misc.events import GroupBan
from misc.events import GroupDecrease
from misc.events import GroupIncrease
from misc.events import GroupRecall
from misc.events import SEGMENT_TEXT
from misc.names import lookup_display_name

if TYPE_CHECKING:
    from ingestion.diagnostics import DiagnosticLog
    from ingestion.service import MessageLogStore
    from misc.messenger import GroupMessenger
    from misc.messenger import GroupPlatform
    from session.models import GroupSession

RECALL_INDICATOR = "RECALL_INDICATOR"


def admin_text(user: str, sub_type: str) -> str:
    if sub_type == "unset":
        return f"{user}被群主剥夺了管理员之力!"
    return f"{user}被群主赐予了管理员之力!"


def decrease_text(user: str, operator: str, sub_type: str) -> str | None:
    if sub_type == "kick_me":
        return None
    if sub_type == "kick":
        return f"{user}由于讨厌{operator}选择将所有人踢出群聊!"
    return f"{user}忍一时越想越气,退一步越想越亏,怒发冲冠下将所有人踢出了群聊!"


def increase_text(user: str, operator: str, sub_type: str) -> str:
    if sub_type == "invite":
        return f"{user}在{operator}的苦苦哀求下加入了我们~"
    return f"{user}大发慈悲、勉为其难地允许了{operator}通过ta的入群申请~"


def ban_text(user: str, operator: str, sub_type: str, duration: int) -> str:
    if sub_type == "lift_ban":
        return f"{operator}哄好了{user},TA现在愿意和我们说话了!"
    return f"{user}因为讨厌{operator}决定在{duration}秒内冷暴力大家!"


class NoticeHandler:
    """Announces membership, admin and ban changes; keeps recalled messages in the log."""

    def __init__(
        self,
        *,
        platform: "GroupPlatform",
        messenger: "GroupMessenger",
        store: "MessageLogStore",
        diagnostics: "DiagnosticLog",
    ) -> None:
        self.platform = platform
        self.messenger = messenger
        self.store = store
        self.diagnostics = diagnostics

    async def _name(self, session: "GroupSession", user_id: int | None) -> str:
        return await lookup_display_name(
            self.platform.member_names,
            session.known_members,
            session.group_id,
            user_id,
        )

    async def handle(self, session: "GroupSession", event) -> None:
        if isinstance(event, GroupAdmin):
            user = await self._name(session, event.user_id)
            await self.messenger.send(session.group_id, admin_text(user, event.sub_type))
        elif isinstance(event, GroupDecrease):
            if event.sub_type == "kick_me":
                print(f"[Notice] removed from group={session.group_id}")
                return
            user = await self._name(session, event.user_id)
            operator = await self._name(session, event.operator_id)
            await self.messenger.send(session.group_id, decrease_text(user, operator, event.sub_type))
        elif isinstance(event, GroupIncrease):
            user = await self._name(session, event.user_id)
            operator = await self._name(session, event.operator_id)
            await self.messenger.send(session.group_id, increase_text(user, operator, event.sub_type))
        elif isinstance(event, GroupBan):
            user = await self._name(session, event.user_id)
            operator = await self._name(session, event.operator_id)
            await self.messenger.send(
                session.group_id,
                ban_text(user, operator, event.sub_type, int(event.duration)),
            )
        elif isinstance(event, GroupRecall):
            await self.handle_recall(session, event)
        else:
            print(f"[Notice] unhandled event {type(event).__name__}")

    async def handle_recall(self, session: "GroupSession", event: GroupRecall) -> list[LogRecord]:
        """
        Writes an indicator row followed by a copy of the recalled rows, so the
        message stays at the tail of the log. Nothing is sent to the group.
        """
        try:
            recalled = await self.store.find(session.group_id, event.message_id)
        except StorageFailure as e:
            await self.diagnostics.error(f"recall lookup failed group={session.group_id}: {e}")
            return []
        if not recalled:
            await self.diagnostics.warn(
                f"recalled message not found group={session.group_id} message={event.message_id}"
            )
            return []

        # platforms that only report the message id: author comes from the log,
        # and an unknown operator is taken to be the author
        user_id = event.user_id or recalled[0].sender_id
        operator_id = event.operator_id if event.operator_id is not None else user_id
        user = await self._name(session, user_id)
        operator = await self._name(session, operator_id)
        indicator = LogRecord(
            message_id=0,
            time=self.store.now_text(event.time),
            sender_id=int(self.platform.bot_id),
            sender_name=RECALL_INDICATOR,
            seg_type=SEGMENT_TEXT,
            content=f"{operator} 撤回了 {user} 的消息, id={event.message_id}",
            interpret=RECALL_INDICATOR,
        )
        copies = [
            LogRecord(
                message_id=r.message_id,
                time=r.time,
                sender_id=r.sender_id,
                sender_name=r.sender_name,
                seg_type=r.seg_type,
                content=r.content,
                interpret=r.interpret,
            )
            for r in recalled
        ]
        try:
            return await self.store.append_records(session.group_id, [indicator] + copies)
        except StorageFailure as e:
            await self.diagnostics.error(f"recall record failed group={session.group_id}: {e}")
            return []
