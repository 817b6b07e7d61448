from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from config.loader import AgentSetting
from config.loader import GroupSetting
from config.loader import KnownMember
from db.pool import SqlitePool
from ingestion.diagnostics import DiagnosticLog
from ingestion.models import LogRecord
from ingestion.service import MessageLogStore
from misc.events import GroupAdmin
from misc.events import GroupBan
from misc.events import GroupDecrease
from misc.events import GroupIncrease
from misc.events import GroupRecall
from misc.messenger import GroupMessenger
from misc.notices import RECALL_INDICATOR
from misc.notices import NoticeHandler
from misc.notices import decrease_text
from session.models import GroupSession

BOT_ID = 999


class _FakePlatform:
    bot_id = BOT_ID
    bot_name = "Momo"

    def __init__(self):
        self.sent: list[tuple[int, str, str | None]] = []
        self.lookups: list[int] = []

    async def send_group(self, group_id, text, *, image_url=None, reply_to=None):
        self.sent.append((group_id, text, image_url))
        return 5000 + len(self.sent)

    async def member_names(self, group_id, user_id):
        self.lookups.append(user_id)
        if user_id == 13:
            raise RuntimeError("member left")
        return ("", f"user{user_id}")


class NoticeHandlerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.pool = SqlitePool(str(Path(self.tmp.name) / "store.db"))
        self.diagnostics = DiagnosticLog(self.pool, table="bot_log", tz_name="UTC")
        self.store = MessageLogStore(
            self.pool,
            table_prefix="message",
            tz_name="UTC",
            data_dir=self.tmp.name,
            diagnostics=self.diagnostics,
        )
        self.platform = _FakePlatform()
        self.messenger = GroupMessenger(self.platform, store=self.store, diagnostics=self.diagnostics)
        self.handler = NoticeHandler(
            platform=self.platform,
            messenger=self.messenger,
            store=self.store,
            diagnostics=self.diagnostics,
        )
        self.session = GroupSession.from_setting(
            GroupSetting(id=1, agent=AgentSetting(known_members={"7": KnownMember(name="主人")}))
        )

    async def asyncTearDown(self):
        await self.pool.close()
        self.tmp.cleanup()

    def _texts(self) -> list[str]:
        return [text for _, text, _ in self.platform.sent]

    async def test_admin_set_and_unset(self):
        await self.handler.handle(self.session, GroupAdmin(group_id=1, user_id=7, sub_type="set"))
        await self.handler.handle(self.session, GroupAdmin(group_id=1, user_id=7, sub_type="unset"))
        self.assertEqual(
            self._texts(),
            ["主人被群主赐予了管理员之力!", "主人被群主剥夺了管理员之力!"],
        )
        self.assertEqual(self.platform.lookups, [])

    async def test_member_changes_use_platform_names(self):
        await self.handler.handle(self.session, GroupIncrease(group_id=1, user_id=8, operator_id=7, sub_type="invite"))
        await self.handler.handle(self.session, GroupDecrease(group_id=1, user_id=8, operator_id=7, sub_type="kick"))
        await self.handler.handle(self.session, GroupDecrease(group_id=1, user_id=8, operator_id=8, sub_type="leave"))
        texts = self._texts()
        self.assertEqual(texts[0], "user8在主人的苦苦哀求下加入了我们~")
        self.assertEqual(texts[1], "user8由于讨厌主人选择将所有人踢出群聊!")
        self.assertTrue(texts[2].startswith("user8忍一时越想越气"))

    async def test_ban_and_lift(self):
        await self.handler.handle(self.session, GroupBan(group_id=1, user_id=8, operator_id=7, duration=600))
        await self.handler.handle(self.session, GroupBan(group_id=1, user_id=8, operator_id=7, sub_type="lift_ban"))
        self.assertEqual(
            self._texts(),
            ["user8因为讨厌主人决定在600秒内冷暴力大家!", "主人哄好了user8,TA现在愿意和我们说话了!"],
        )

    async def test_failed_name_lookup_falls_back_to_id(self):
        await self.handler.handle(self.session, GroupAdmin(group_id=1, user_id=13))
        self.assertEqual(self._texts(), ["13被群主赐予了管理员之力!"])

    async def test_bot_removal_sends_nothing(self):
        self.assertIsNone(decrease_text("a", "b", "kick_me"))
        await self.handler.handle(self.session, GroupDecrease(group_id=1, user_id=BOT_ID, sub_type="kick_me"))
        self.assertEqual(self.platform.sent, [])

    async def test_announcements_are_logged_as_bot_rows(self):
        await self.handler.handle(self.session, GroupAdmin(group_id=1, user_id=7))
        rows = await self.store.tail(1, 10)
        self.assertEqual(len(rows), 1)
        self.assertEqual((rows[0].sender_id, rows[0].sender_name), (BOT_ID, "Momo"))
        self.assertEqual(rows[0].message_id, 5001)

    async def test_recall_appends_indicator_and_copies(self):
        await self.store.append_records(
            1,
            [
                LogRecord(message_id=77, time="t", sender_id=8, sender_name="B", seg_type="text", content="oops", interpret="text"),
                LogRecord(message_id=77, time="t", sender_id=8, sender_name="B", seg_type="image", content="/a.png", interpret="https://x/a.png"),
            ],
        )
        await self.store.append_records(
            1,
            [LogRecord(message_id=78, time="t", sender_id=9, sender_name="C", seg_type="text", content="later", interpret="text")],
        )

        written = await self.handler.handle_recall(self.session, GroupRecall(group_id=1, message_id=77, user_id=0))

        self.assertEqual(len(written), 3)
        rows = await self.store.tail(1, 3)
        indicator, *copies = rows
        self.assertEqual(indicator.sender_name, RECALL_INDICATOR)
        self.assertEqual(indicator.interpret, RECALL_INDICATOR)
        self.assertIn("user8 撤回了 user8 的消息", indicator.content)
        self.assertIn("id=77", indicator.content)
        self.assertEqual([c.content for c in copies], ["oops", "/a.png"])
        self.assertEqual({c.message_id for c in copies}, {77})
        self.assertEqual(len(await self.store.tail(1, 100)), 6)
        self.assertEqual(self.platform.sent, [])

    async def test_recall_of_unknown_message_warns(self):
        written = await self.handler.handle_recall(self.session, GroupRecall(group_id=1, message_id=404, user_id=8))
        self.assertEqual(written, [])
        entries = await self.diagnostics.tail(10)
        self.assertEqual([e[1] for e in entries], ["WARN"])


class GroupMessengerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.pool = SqlitePool(str(Path(self.tmp.name) / "store.db"))
        self.diagnostics = DiagnosticLog(self.pool, table="bot_log", tz_name="UTC")
        self.store = MessageLogStore(
            self.pool,
            table_prefix="message",
            tz_name="UTC",
            data_dir=self.tmp.name,
            diagnostics=self.diagnostics,
        )
        self.platform = _FakePlatform()
        self.messenger = GroupMessenger(self.platform, store=self.store, diagnostics=self.diagnostics)

    async def asyncTearDown(self):
        await self.pool.close()
        self.tmp.cleanup()

    async def test_text_with_image_logs_two_rows(self):
        message_id = await self.messenger.send(1, "开播了", image_url="https://img/1.jpg")
        rows = await self.store.tail(1, 10)
        self.assertEqual(message_id, 5001)
        self.assertEqual([r.seg_type for r in rows], ["text", "image"])
        self.assertEqual(rows[0].interpret, "text")
        self.assertEqual(rows[1].interpret, "https://img/1.jpg")
        self.assertEqual({r.message_id for r in rows}, {5001})


if __name__ == "__main__":
    unittest.main()
