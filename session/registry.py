from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from config.loader import AppConfig
from session.models import GroupSession

MonitorFactory = Callable[[GroupSession], Callable[[], Awaitable[None]]]


class GroupSessionRegistry:
    """Owns every configured group's session and its live-monitor task."""

    def __init__(self) -> None:
        self._sessions: dict[int, GroupSession] = {}

    def load(self, config: AppConfig) -> None:
        sessions: dict[int, GroupSession] = {}
        for setting in config.groups:
            sessions[int(setting.id)] = GroupSession.from_setting(setting)
        self._sessions = sessions
        print(f"[Registry] loaded {len(sessions)} group session(s)")

    def get(self, group_id: int | None) -> GroupSession | None:
        if group_id is None:
            return None
        return self._sessions.get(int(group_id))

    def sessions(self) -> list[GroupSession]:
        return list(self._sessions.values())

    def by_channel(self, channel_id: int) -> GroupSession | None:
        for session in self._sessions.values():
            if session.channel_id and session.channel_id == int(channel_id):
                return session
        return None

    def start_monitors(self, factory: MonitorFactory) -> int:
        started = 0
        for session in self._sessions.values():
            if session.live is None:
                continue
            if session.live_task is not None and not session.live_task.done():
                continue
            run = factory(session)
            session.live_task = asyncio.create_task(run(), name=f"live-monitor-{session.group_id}")
            started += 1
        if started:
            print(f"[Registry] started {started} live monitor(s)")
        return started

    async def shutdown(self) -> None:
        tasks = [s.live_task for s in self._sessions.values() if s.live_task is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for session in self._sessions.values():
            session.live_task = None

    async def reload(self, config: AppConfig, factory: MonitorFactory) -> None:
        # mute flags and active models reset with the sessions
        await self.shutdown()
        self.load(config)
        self.start_monitors(factory)
