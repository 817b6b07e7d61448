from __future__ import annotations

from typing import TYPE_CHECKING

from controller.commands import CMD_DUMP_HISTORY
from controller.commands import CMD_DUMP_LOG
from controller.commands import CMD_MUTE
from controller.commands import CMD_SWITCH_MODEL
from controller.commands import CMD_UNMUTE
from controller.commands import CommandMatch
from misc.errors import InvalidArgument
from misc.errors import PermissionDenied
from misc.errors import StorageFailure
from misc.errors import UploadError

if TYPE_CHECKING:
    from ingestion.diagnostics import DiagnosticLog
    from ingestion.service import MessageLogStore
    from live.monitor import Sender
    from session.models import GroupSession
    from session.registry import GroupSessionRegistry

MUTED_REPLY = "接下来我将冷暴力你们所有人,直到主人哀求我"
UNMUTED_REPLY = "我勉为其难地同意和你们聊天"
UNCHANGED_REPLY = "..."
NO_AGENT_REPLY = "未配置agent"
EXPORT_FAILED_REPLY = "导出失败了"


def _count_arg(match: CommandMatch, limit: int) -> int:
    try:
        count = int(match.args.get("count", ""))
    except ValueError:
        raise InvalidArgument("count must be a number") from None
    if count < 1:
        raise InvalidArgument("count must be at least 1")
    if count > limit:
        raise InvalidArgument(f"count must be at most {limit}")
    return count


class CommandService:
    """Parses, authorizes and executes operator commands for configured groups."""

    def __init__(
        self,
        registry: "GroupSessionRegistry",
        *,
        store: "MessageLogStore",
        messenger: "Sender",
        diagnostics: "DiagnosticLog",
    ) -> None:
        self.registry = registry
        self.store = store
        self.messenger = messenger
        self.diagnostics = diagnostics

    def authorize(self, session: "GroupSession", sender_id: int) -> None:
        if session.commands is None or not session.commands.is_admin(sender_id):
            raise PermissionDenied(f"user {sender_id} is not an admin of group {session.group_id}")

    async def execute(self, session: "GroupSession", match: CommandMatch) -> str:
        if match.name in (CMD_MUTE, CMD_UNMUTE, CMD_SWITCH_MODEL) and session.agent is None:
            return NO_AGENT_REPLY

        if match.name == CMD_MUTE:
            changed = await session.set_muted(True)
            return MUTED_REPLY if changed else UNCHANGED_REPLY
        if match.name == CMD_UNMUTE:
            changed = await session.set_muted(False)
            return UNMUTED_REPLY if changed else UNCHANGED_REPLY
        if match.name == CMD_SWITCH_MODEL:
            model = match.args.get("model", "")
            await session.set_model(model)
            return f"我的脑子被换成了{model}"
        if match.name == CMD_DUMP_HISTORY:
            result = await self.store.export(session.group_id, _count_arg(match, session.commands.max_count))
            return f"导出了{result.count}条聊天记录: {result.address}"
        if match.name == CMD_DUMP_LOG:
            result = await self.store.export_diagnostics(_count_arg(match, session.commands.max_count))
            return f"导出了{result.count}条日志: {result.address}"
        raise InvalidArgument(f"unknown command {match.name}")

    async def try_handle(self, group_id: int, sender_id: int, text: str, *, reply_to: int | None = None) -> bool:
        """
        Returns True when the text was a command for this group, whether or not it ran.

        Commands from non-admins are dropped without a reply.
        """
        session = self.registry.get(group_id)
        if session is None or session.commands is None:
            return False
        match = session.commands.match(text)
        if match is None:
            return False

        try:
            self.authorize(session, sender_id)
        except PermissionDenied as e:
            print(f"[Command] ignored {match.name}: {e}")
            return True

        print(f"[Command] group={group_id} user={sender_id} cmd={match.name} args={match.args}")
        try:
            reply = await self.execute(session, match)
        except InvalidArgument as e:
            reply = str(e)
        except UploadError as e:
            await self.diagnostics.error(f"{match.name} export failed group={group_id}: {e} stderr={e.stderr}")
            reply = EXPORT_FAILED_REPLY
        except StorageFailure as e:
            await self.diagnostics.error(f"{match.name} failed group={group_id}: {e}")
            reply = EXPORT_FAILED_REPLY

        await self.messenger.send(group_id, reply, reply_to=reply_to)
        return True
