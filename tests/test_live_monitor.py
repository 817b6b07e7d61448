from __future__ import annotations

import asyncio
import unittest

import httpx

from config.loader import GroupSetting
from config.loader import LiveSetting
from live.client import BilibiliLiveClient
from live.client import LiveRoom
from live.client import parse_room
from live.monitor import LiveMonitor
from live.monitor import OFFLINE
from live.monitor import ONLINE
from live.monitor import UNKNOWN
from live.monitor import next_transition
from live.queries import handle_local_query
from live.queries import handle_room_query
from misc.errors import LiveStatusError
from misc.errors import RoomNotFound
from session.models import GroupSession


def _room(streaming: bool, **kwargs) -> LiveRoom:
    base = dict(
        room_id="42",
        streaming=streaming,
        title="打游戏",
        description="今天玩新游戏",
        area_name="单机",
        online=1234,
        attention=99,
        keyframe="https://img.example/key.jpg",
        user_cover="https://img.example/cover.jpg",
    )
    base.update(kwargs)
    return LiveRoom(**base)


class _ScriptedFetch:
    def __init__(self, results):
        self.results = list(results)
        self.calls = 0

    async def __call__(self, room_id: str) -> LiveRoom:
        self.calls += 1
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class _FakeMessenger:
    def __init__(self):
        self.sent: list[dict] = []

    async def send(self, group_id, text, *, image_url=None, reply_to=None):
        self.sent.append({"group_id": group_id, "text": text, "image_url": image_url, "reply_to": reply_to})
        return len(self.sent)


class _FakeDiagnostics:
    def __init__(self):
        self.entries: list[tuple[str, str]] = []

    async def warn(self, content: str) -> None:
        self.entries.append(("WARN", content))

    async def error(self, content: str) -> None:
        self.entries.append(("ERROR", content))


def _session() -> GroupSession:
    return GroupSession.from_setting(
        GroupSetting(
            id=1,
            channel_id=10,
            live=LiveSetting(room_id="42", online_msg="开播啦", offline_msg="下播了", poll_interval_sec=5),
        )
    )


class TransitionTests(unittest.TestCase):
    def test_first_observation_is_silent(self):
        self.assertEqual(next_transition(UNKNOWN, True), (ONLINE, None))
        self.assertEqual(next_transition(UNKNOWN, False), (OFFLINE, None))

    def test_changes_notify_and_repeats_do_not(self):
        self.assertEqual(next_transition(OFFLINE, True), (ONLINE, ONLINE))
        self.assertEqual(next_transition(ONLINE, False), (OFFLINE, OFFLINE))
        self.assertEqual(next_transition(ONLINE, True), (ONLINE, None))
        self.assertEqual(next_transition(OFFLINE, False), (OFFLINE, None))


class ParseRoomTests(unittest.TestCase):
    def test_parse_streaming_room(self):
        room = parse_room(
            "42",
            {"code": 0, "data": {"live_status": 1, "title": "t", "online": "7", "attention": 3, "keyframe": ""}},
        )
        self.assertTrue(room.streaming)
        self.assertEqual((room.online, room.attention), (7, 3))
        self.assertIsNone(room.image)
        self.assertEqual(room.url, "https://live.bilibili.com/42")

    def test_missing_room(self):
        with self.assertRaises(RoomNotFound):
            parse_room("42", {"code": 1, "msg": "房间不存在"})

    def test_malformed_body(self):
        with self.assertRaises(LiveStatusError):
            parse_room("42", ["not", "a", "dict"])


class LiveClientTests(unittest.IsolatedAsyncioTestCase):
    async def test_fetch_room_over_http(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["room_id"] = request.url.params.get("room_id")
            return httpx.Response(200, json={"code": 0, "data": {"live_status": 0, "title": "休息中"}})

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client = BilibiliLiveClient(http=http)
        room = await client.fetch_room("42")
        await http.aclose()

        self.assertEqual(seen["room_id"], "42")
        self.assertFalse(room.streaming)
        self.assertEqual(room.title, "休息中")

    async def test_http_error_status_is_a_live_status_error(self):
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(503, text="busy")))
        client = BilibiliLiveClient(http=http)
        with self.assertRaises(LiveStatusError):
            await client.fetch_room("42")
        await http.aclose()


class LiveMonitorTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.session = _session()
        self.messenger = _FakeMessenger()
        self.diagnostics = _FakeDiagnostics()

    def _monitor(self, fetch, **kwargs) -> LiveMonitor:
        return LiveMonitor(
            self.session,
            fetch_room=fetch,
            messenger=self.messenger,
            diagnostics=self.diagnostics,
            **kwargs,
        )

    async def test_transition_sequence_sends_exactly_two_notifications(self):
        fetch = _ScriptedFetch([_room(False), _room(False), _room(True), _room(True), _room(False)])
        monitor = self._monitor(fetch)
        for _ in range(5):
            await monitor.poll_once()

        self.assertEqual(len(self.messenger.sent), 2)
        online, offline = self.messenger.sent
        self.assertIn("开播啦", online["text"])
        self.assertIn("标题:打游戏", online["text"])
        self.assertIn("简介:今天玩新游戏", online["text"])
        self.assertIn("热度:1234, 关注:99", online["text"])
        self.assertIn("https://live.bilibili.com/42", online["text"])
        self.assertEqual(online["image_url"], "https://img.example/key.jpg")
        self.assertEqual(offline["text"], "下播了")
        self.assertEqual(self.session.live_state.status, OFFLINE)

    async def test_startup_while_streaming_is_silent(self):
        monitor = self._monitor(_ScriptedFetch([_room(True)]))
        self.assertIsNone(await monitor.poll_once())
        self.assertEqual(self.messenger.sent, [])
        self.assertEqual(self.session.live_state.status, ONLINE)

    async def test_cover_is_used_when_keyframe_missing(self):
        monitor = self._monitor(_ScriptedFetch([_room(False), _room(True, keyframe="")]))
        await monitor.poll_once()
        await monitor.poll_once()
        self.assertEqual(self.messenger.sent[0]["image_url"], "https://img.example/cover.jpg")

    async def test_fetch_failure_keeps_state_and_writes_diagnostic(self):
        monitor = self._monitor(_ScriptedFetch([_room(False), LiveStatusError("timeout"), _room(False)]))
        await monitor.poll_once()
        await monitor.poll_once()
        self.assertEqual(self.session.live_state.status, OFFLINE)
        self.assertEqual(len(self.diagnostics.entries), 1)
        await monitor.poll_once()
        self.assertEqual(self.messenger.sent, [])

    async def test_run_forever_survives_errors_and_sleeps_between_polls(self):
        sleeps: list[float] = []

        async def fake_sleep(seconds: float) -> None:
            sleeps.append(seconds)
            if len(sleeps) >= 3:
                raise asyncio.CancelledError

        fetch = _ScriptedFetch([RuntimeError("boom"), _room(False), _room(True)])
        monitor = self._monitor(fetch, sleep=fake_sleep)
        with self.assertRaises(asyncio.CancelledError):
            await monitor.run_forever()

        self.assertEqual(sleeps, [5, 5, 5])
        self.assertEqual(fetch.calls, 3)
        self.assertEqual(len(self.messenger.sent), 1)
        self.assertEqual(self.diagnostics.entries[0][0], "ERROR")


class LiveQueryTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.session = _session()
        self.messenger = _FakeMessenger()
        self.diagnostics = _FakeDiagnostics()

    async def test_local_query_uses_last_known_state(self):
        self.session.live_state.status = ONLINE
        self.session.live_state.last_room = _room(True)
        fetch = _ScriptedFetch([])

        handled = await handle_local_query(
            self.session, "查询直播间", fetch_room=fetch, messenger=self.messenger, diagnostics=self.diagnostics
        )

        self.assertTrue(handled)
        self.assertEqual(fetch.calls, 0)
        self.assertTrue(self.messenger.sent[0]["text"].startswith("开播啦"))

    async def test_local_query_fetches_once_when_nothing_observed(self):
        fetch = _ScriptedFetch([_room(False)])
        await handle_local_query(
            self.session, "查询直播间", fetch_room=fetch, messenger=self.messenger, diagnostics=self.diagnostics
        )
        self.assertEqual(fetch.calls, 1)
        self.assertTrue(self.messenger.sent[0]["text"].startswith("下播了"))
        self.assertEqual(self.session.live_state.status, UNKNOWN)

    async def test_unrelated_text_is_not_a_query(self):
        handled = await handle_local_query(
            self.session, "你好", fetch_room=_ScriptedFetch([]), messenger=self.messenger, diagnostics=self.diagnostics
        )
        self.assertFalse(handled)

    async def test_room_query_for_any_room(self):
        fetch = _ScriptedFetch([_room(True, room_id="777")])
        handled = await handle_room_query(
            1, "查询直播间 777", fetch_room=fetch, messenger=self.messenger, diagnostics=self.diagnostics
        )
        self.assertTrue(handled)
        self.assertIn("直播中", self.messenger.sent[0]["text"])
        self.assertIn("https://live.bilibili.com/777", self.messenger.sent[0]["text"])

    async def test_room_query_for_missing_room(self):
        fetch = _ScriptedFetch([RoomNotFound("777")])
        await handle_room_query(1, "查询直播间 777", fetch_room=fetch, messenger=self.messenger, diagnostics=self.diagnostics)
        self.assertEqual(self.messenger.sent[0]["text"], "直播间777不存在")

    async def test_room_query_with_bad_id(self):
        fetch = _ScriptedFetch([])
        await handle_room_query(1, "查询直播间 abc", fetch_room=fetch, messenger=self.messenger, diagnostics=self.diagnostics)
        self.assertEqual(self.messenger.sent[0]["text"], "直播间不存在")
        self.assertEqual(fetch.calls, 0)


if __name__ == "__main__":
    unittest.main()
