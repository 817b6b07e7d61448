from __future__ import annotations

import asyncio
import unittest

from config.loader import AgentSetting
from config.loader import AppConfig
from config.loader import GroupSetting
from config.loader import LiveSetting
from session.registry import GroupSessionRegistry


def _config(*group_ids: int, live: bool = True) -> AppConfig:
    return AppConfig(
        groups=[
            GroupSetting(
                id=gid,
                channel_id=gid * 10,
                agent=AgentSetting(),
                live=LiveSetting(room_id=str(gid)) if live else None,
            )
            for gid in group_ids
        ]
    )


class _MonitorFactory:
    def __init__(self):
        self.started: list[int] = []
        self.cancelled: list[int] = []

    def __call__(self, session):
        async def run():
            self.started.append(session.group_id)
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.cancelled.append(session.group_id)
                raise

        return run


class GroupSessionRegistryTests(unittest.IsolatedAsyncioTestCase):
    async def test_lookup_by_group_and_channel(self):
        registry = GroupSessionRegistry()
        registry.load(_config(1, 2))
        self.assertEqual(registry.get(1).group_id, 1)
        self.assertEqual(registry.get("2").group_id, 2)
        self.assertIsNone(registry.get(3))
        self.assertIsNone(registry.get(None))
        self.assertEqual(registry.by_channel(20).group_id, 2)
        self.assertIsNone(registry.by_channel(99))

    async def test_one_monitor_per_live_group(self):
        registry = GroupSessionRegistry()
        registry.load(_config(1, 2))
        factory = _MonitorFactory()

        self.assertEqual(registry.start_monitors(factory), 2)
        self.assertEqual(registry.start_monitors(factory), 0)
        await asyncio.sleep(0)
        self.assertEqual(sorted(factory.started), [1, 2])
        self.assertEqual(registry.get(1).live_task.get_name(), "live-monitor-1")

        await registry.shutdown()
        self.assertEqual(sorted(factory.cancelled), [1, 2])
        self.assertIsNone(registry.get(1).live_task)

    async def test_groups_without_live_get_no_monitor(self):
        registry = GroupSessionRegistry()
        registry.load(_config(1, live=False))
        self.assertEqual(registry.start_monitors(_MonitorFactory()), 0)

    async def test_reload_replaces_sessions_and_resets_runtime_state(self):
        registry = GroupSessionRegistry()
        registry.load(_config(1))
        factory = _MonitorFactory()
        registry.start_monitors(factory)
        await registry.get(1).set_muted(True)
        await asyncio.sleep(0)

        await registry.reload(_config(1, 3), factory)
        await asyncio.sleep(0)

        self.assertFalse(registry.get(1).muted)
        self.assertIsNotNone(registry.get(3))
        self.assertEqual(factory.cancelled, [1])
        self.assertEqual(sorted(factory.started), [1, 1, 3])
        await registry.shutdown()


if __name__ == "__main__":
    unittest.main()
