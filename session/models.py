from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from config.defaults import ALLOWED_MODELS
from config.defaults import DEFAULT_MODEL
from config.loader import AgentSetting
from config.loader import GroupSetting
from config.loader import KnownMember
from config.loader import LiveSetting
from controller.commands import CommandTable
from controller.commands import build_command_table
from live.monitor import LiveState
from misc.errors import InvalidArgument


@dataclass(slots=True)
class GroupSession:
    group_id: int
    channel_id: int = 0
    commands: CommandTable | None = None
    agent: AgentSetting | None = None
    live: LiveSetting | None = None
    muted: bool = False
    active_model: str = DEFAULT_MODEL
    live_state: LiveState = field(default_factory=LiveState)
    live_task: asyncio.Task | None = field(default=None, repr=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @classmethod
    def from_setting(cls, setting: GroupSetting) -> "GroupSession":
        return cls(
            group_id=int(setting.id),
            channel_id=int(setting.channel_id or 0),
            commands=build_command_table(setting.command) if setting.command else None,
            agent=setting.agent,
            live=setting.live,
            active_model=setting.agent.model if setting.agent else DEFAULT_MODEL,
        )

    @property
    def known_members(self) -> dict[str, KnownMember]:
        return self.agent.known_members if self.agent else {}

    @property
    def admin_ids(self) -> frozenset[int]:
        return self.commands.admin_ids if self.commands else frozenset()

    def is_known(self, user_id: int) -> bool:
        return str(user_id) in self.known_members

    async def set_muted(self, value: bool) -> bool:
        """Returns False when the flag already had that value."""
        async with self._lock:
            if self.muted == bool(value):
                return False
            self.muted = bool(value)
            return True

    async def set_model(self, model: str) -> str:
        """Switch the active model; returns the previous one."""
        model = (model or "").strip()
        if model not in ALLOWED_MODELS:
            raise InvalidArgument(f"unknown model {model!r}, choose one of {', '.join(ALLOWED_MODELS)}")
        async with self._lock:
            previous = self.active_model
            self.active_model = model
            return previous
