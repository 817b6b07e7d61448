from __future__ import annotations

import re
from dataclasses import dataclass

from config.defaults import DEFAULT_MAX_DUMP_COUNT
from config.loader import CommandSetting
from misc.errors import ConfigError

CMD_MUTE = "mute"
CMD_UNMUTE = "unmute"
CMD_SWITCH_MODEL = "switch_model"
CMD_DUMP_HISTORY = "dump_history"
CMD_DUMP_LOG = "dump_log"

COMMAND_ORDER = (CMD_MUTE, CMD_UNMUTE, CMD_SWITCH_MODEL, CMD_DUMP_HISTORY, CMD_DUMP_LOG)

_ARGUMENT_SUFFIX = {
    CMD_SWITCH_MODEL: r"\s+(?P<model>\S+)",
    CMD_DUMP_HISTORY: r"\s+(?P<count>\d+)",
    CMD_DUMP_LOG: r"\s+(?P<count>\d+)",
}


@dataclass(frozen=True, slots=True)
class CommandMatch:
    name: str
    args: dict[str, str]


@dataclass(frozen=True, slots=True)
class CommandTable:
    patterns: tuple[tuple[str, re.Pattern[str]], ...]
    admin_ids: frozenset[int]
    max_count: int = DEFAULT_MAX_DUMP_COUNT

    def match(self, text: str) -> CommandMatch | None:
        """First configured command whose pattern occurs in the text."""
        for name, pattern in self.patterns:
            m = pattern.search(text or "")
            if m:
                args = {k: v for k, v in m.groupdict().items() if v is not None}
                return CommandMatch(name=name, args=args)
        return None

    def is_admin(self, user_id: int) -> bool:
        return int(user_id) in self.admin_ids


def build_command_table(setting: CommandSetting) -> CommandTable:
    compiled: list[tuple[str, re.Pattern[str]]] = []
    for name in COMMAND_ORDER:
        raw = str(getattr(setting, name) or "").strip()
        if not raw:
            continue
        source = raw + _ARGUMENT_SUFFIX.get(name, "")
        try:
            compiled.append((name, re.compile(source)))
        except re.error as e:
            raise ConfigError(f"command.{name} pattern {raw!r} is invalid: {e}") from e
    return CommandTable(
        patterns=tuple(compiled),
        admin_ids=frozenset(setting.admin_ids),
        max_count=int(setting.max_dump_count),
    )
