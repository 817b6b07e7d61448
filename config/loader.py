from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from config.defaults import ALLOWED_MODELS
from config.defaults import DEFAULT_AWARE_HISTORY_SEGMENTS
from config.defaults import DEFAULT_BOT_NAME
from config.defaults import DEFAULT_DATA_DIR
from config.defaults import DEFAULT_DB_PATH
from config.defaults import DEFAULT_DEV_PROMPT
from config.defaults import DEFAULT_DUMP_HISTORY_PATTERN
from config.defaults import DEFAULT_DUMP_LOG_PATTERN
from config.defaults import DEFAULT_GROUP_TABLE_PREFIX
from config.defaults import DEFAULT_LIVE_QUERY_MESSAGE
from config.defaults import DEFAULT_LOG_TABLE_NAME
from config.defaults import DEFAULT_MAX_CONNECTIONS
from config.defaults import DEFAULT_MAX_DUMP_COUNT
from config.defaults import DEFAULT_MAX_SLEEP_SEC
from config.defaults import DEFAULT_MODEL
from config.defaults import DEFAULT_MUTE_PATTERN
from config.defaults import DEFAULT_POLL_INTERVAL_SEC
from config.defaults import DEFAULT_SWITCH_MODEL_PATTERN
from config.defaults import DEFAULT_TIMEZONE
from config.defaults import DEFAULT_UNMUTE_PATTERN
from config.defaults import DEFAULT_USER_PROMPT
from misc.errors import ConfigError

SQL_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(slots=True)
class GlobalSetting:
    max_sleep_sec: float = DEFAULT_MAX_SLEEP_SEC
    timezone: str = DEFAULT_TIMEZONE
    data_dir: str = DEFAULT_DATA_DIR
    bot_name: str = DEFAULT_BOT_NAME


@dataclass(slots=True)
class DatabaseSetting:
    path: str = DEFAULT_DB_PATH
    max_connections: int = DEFAULT_MAX_CONNECTIONS
    log_table_name: str = DEFAULT_LOG_TABLE_NAME
    group_table_prefix: str = DEFAULT_GROUP_TABLE_PREFIX


@dataclass(slots=True)
class ObjectStorageSetting:
    script_path: str = ""


@dataclass(slots=True)
class LlmSetting:
    api_key: str = ""
    base_url: str | None = None


@dataclass(slots=True)
class KnownMember:
    name: str
    description: str = ""
    aliases: tuple[str, ...] = ()


@dataclass(slots=True)
class LiveSetting:
    room_id: str
    online_msg: str = "XX开播了"
    offline_msg: str = "XX下播了"
    query_message: str = DEFAULT_LIVE_QUERY_MESSAGE
    poll_interval_sec: float = DEFAULT_POLL_INTERVAL_SEC


@dataclass(slots=True)
class AgentSetting:
    model: str = DEFAULT_MODEL
    dev_prompt: str = DEFAULT_DEV_PROMPT
    user_prompt: str = DEFAULT_USER_PROMPT
    aware_history_segments: int = DEFAULT_AWARE_HISTORY_SEGMENTS
    known_members: dict[str, KnownMember] = field(default_factory=dict)


@dataclass(slots=True)
class CommandSetting:
    mute: str = DEFAULT_MUTE_PATTERN
    unmute: str = DEFAULT_UNMUTE_PATTERN
    switch_model: str = DEFAULT_SWITCH_MODEL_PATTERN
    dump_history: str = DEFAULT_DUMP_HISTORY_PATTERN
    dump_log: str = DEFAULT_DUMP_LOG_PATTERN
    max_dump_count: int = DEFAULT_MAX_DUMP_COUNT
    admin_ids: frozenset[int] = frozenset()


@dataclass(slots=True)
class GroupSetting:
    id: int
    channel_id: int = 0
    live: LiveSetting | None = None
    agent: AgentSetting | None = None
    command: CommandSetting | None = None


@dataclass(slots=True)
class AppConfig:
    global_: GlobalSetting = field(default_factory=GlobalSetting)
    database: DatabaseSetting = field(default_factory=DatabaseSetting)
    object_storage: ObjectStorageSetting | None = None
    llm: LlmSetting = field(default_factory=LlmSetting)
    groups: list[GroupSetting] = field(default_factory=list)


def _as_dict(value: Any, where: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{where} must be a mapping")
    return value


def _as_int(value: Any, where: str, default: int | None = None) -> int:
    if value is None and default is not None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{where} must be an integer, got {value!r}") from None


def _as_float(value: Any, where: str, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{where} must be a number, got {value!r}") from None


def _as_str(value: Any, default: str = "") -> str:
    if value is None:
        return default
    return str(value)


def _as_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    out: list[str] = []
    for item in value:
        text = str(item or "").strip()
        if text:
            out.append(text)
    return out


def _parse_known_members(raw: Any, where: str) -> dict[str, KnownMember]:
    members: dict[str, KnownMember] = {}
    for user_id, entry in _as_dict(raw, where).items():
        key = str(user_id).strip()
        if isinstance(entry, str):
            members[key] = KnownMember(name=entry)
            continue
        if isinstance(entry, list) and entry:
            # [name, description] pairs are accepted as shorthand
            members[key] = KnownMember(
                name=str(entry[0]),
                description=str(entry[1]) if len(entry) > 1 else "",
            )
            continue
        data = _as_dict(entry, f"{where}.{key}")
        name = _as_str(data.get("name")).strip()
        if not name:
            raise ConfigError(f"{where}.{key}.name is required")
        members[key] = KnownMember(
            name=name,
            description=_as_str(data.get("description")),
            aliases=tuple(_as_list(data.get("aliases"))),
        )
    return members


def _parse_live(raw: Any, where: str) -> LiveSetting | None:
    if raw is None:
        return None
    data = _as_dict(raw, where)
    room_id = _as_str(data.get("room_id")).strip()
    if not room_id:
        raise ConfigError(f"{where}.room_id is required")
    interval = _as_float(data.get("poll_interval_sec"), f"{where}.poll_interval_sec", DEFAULT_POLL_INTERVAL_SEC)
    if interval <= 0:
        raise ConfigError(f"{where}.poll_interval_sec must be positive")
    return LiveSetting(
        room_id=room_id,
        online_msg=_as_str(data.get("online_msg"), "XX开播了"),
        offline_msg=_as_str(data.get("offline_msg"), "XX下播了"),
        query_message=_as_str(data.get("query_message"), DEFAULT_LIVE_QUERY_MESSAGE),
        poll_interval_sec=interval,
    )


def _parse_agent(raw: Any, where: str) -> AgentSetting | None:
    if raw is None:
        return None
    data = _as_dict(raw, where)
    model = _as_str(data.get("model"), DEFAULT_MODEL).strip()
    if model not in ALLOWED_MODELS:
        raise ConfigError(f"{where}.model {model!r} is not one of {', '.join(ALLOWED_MODELS)}")
    return AgentSetting(
        model=model,
        dev_prompt=_as_str(data.get("dev_prompt"), DEFAULT_DEV_PROMPT),
        user_prompt=_as_str(data.get("user_prompt"), DEFAULT_USER_PROMPT),
        aware_history_segments=_as_int(
            data.get("aware_history_segments"),
            f"{where}.aware_history_segments",
            DEFAULT_AWARE_HISTORY_SEGMENTS,
        ),
        known_members=_parse_known_members(data.get("known_members"), f"{where}.known_members"),
    )


def _parse_command(raw: Any, where: str) -> CommandSetting | None:
    if raw is None:
        return None
    data = _as_dict(raw, where)
    admin_ids = data.get("admin_ids") or []
    if not isinstance(admin_ids, list):
        raise ConfigError(f"{where}.admin_ids must be a list")
    max_dump_count = _as_int(data.get("max_dump_count"), f"{where}.max_dump_count", DEFAULT_MAX_DUMP_COUNT)
    if max_dump_count < 1:
        raise ConfigError(f"{where}.max_dump_count must be positive")
    return CommandSetting(
        mute=_as_str(data.get("mute"), DEFAULT_MUTE_PATTERN),
        unmute=_as_str(data.get("unmute"), DEFAULT_UNMUTE_PATTERN),
        switch_model=_as_str(data.get("switch_model"), DEFAULT_SWITCH_MODEL_PATTERN),
        dump_history=_as_str(data.get("dump_history"), DEFAULT_DUMP_HISTORY_PATTERN),
        dump_log=_as_str(data.get("dump_log"), DEFAULT_DUMP_LOG_PATTERN),
        max_dump_count=max_dump_count,
        admin_ids=frozenset(_as_int(uid, f"{where}.admin_ids") for uid in admin_ids),
    )


def parse_config(payload: Any) -> AppConfig:
    data = _as_dict(payload, "config")

    g = _as_dict(data.get("global"), "global")
    global_setting = GlobalSetting(
        max_sleep_sec=max(0.0, _as_float(g.get("max_sleep_sec"), "global.max_sleep_sec", DEFAULT_MAX_SLEEP_SEC)),
        timezone=_as_str(g.get("timezone"), DEFAULT_TIMEZONE) or DEFAULT_TIMEZONE,
        data_dir=_as_str(g.get("data_dir"), DEFAULT_DATA_DIR) or DEFAULT_DATA_DIR,
        bot_name=_as_str(g.get("bot_name"), DEFAULT_BOT_NAME) or DEFAULT_BOT_NAME,
    )

    d = _as_dict(data.get("database"), "database")
    database = DatabaseSetting(
        path=_as_str(d.get("path"), DEFAULT_DB_PATH) or DEFAULT_DB_PATH,
        max_connections=max(1, _as_int(d.get("max_connections"), "database.max_connections", DEFAULT_MAX_CONNECTIONS)),
        log_table_name=_as_str(d.get("log_table_name"), DEFAULT_LOG_TABLE_NAME),
        group_table_prefix=_as_str(d.get("group_table_prefix"), DEFAULT_GROUP_TABLE_PREFIX),
    )
    for name, value in (
        ("database.log_table_name", database.log_table_name),
        ("database.group_table_prefix", database.group_table_prefix),
    ):
        if not SQL_IDENTIFIER_RE.match(value):
            raise ConfigError(f"{name} must be a plain SQL identifier, got {value!r}")

    object_storage = None
    if data.get("object_storage") is not None:
        o = _as_dict(data.get("object_storage"), "object_storage")
        script_path = _as_str(o.get("script_path")).strip()
        if script_path:
            object_storage = ObjectStorageSetting(script_path=script_path)

    l = _as_dict(data.get("llm"), "llm")
    llm = LlmSetting(
        api_key=_as_str(l.get("api_key")).strip(),
        base_url=_as_str(l.get("base_url")).strip() or None,
    )

    raw_groups = data.get("groups") or []
    if not isinstance(raw_groups, list):
        raise ConfigError("groups must be a list")
    groups: list[GroupSetting] = []
    seen: set[int] = set()
    for idx, raw_group in enumerate(raw_groups):
        where = f"groups[{idx}]"
        gd = _as_dict(raw_group, where)
        group_id = _as_int(gd.get("id"), f"{where}.id")
        if group_id in seen:
            raise ConfigError(f"{where}.id {group_id} is configured twice")
        seen.add(group_id)
        groups.append(
            GroupSetting(
                id=group_id,
                channel_id=_as_int(gd.get("channel_id"), f"{where}.channel_id", 0),
                live=_parse_live(gd.get("live"), f"{where}.live"),
                agent=_parse_agent(gd.get("agent"), f"{where}.agent"),
                command=_parse_command(gd.get("command"), f"{where}.command"),
            )
        )

    return AppConfig(
        global_=global_setting,
        database=database,
        object_storage=object_storage,
        llm=llm,
        groups=groups,
    )


def config_template() -> dict[str, Any]:
    return {
        "global": {
            "max_sleep_sec": DEFAULT_MAX_SLEEP_SEC,
            "timezone": DEFAULT_TIMEZONE,
            "data_dir": DEFAULT_DATA_DIR,
            "bot_name": DEFAULT_BOT_NAME,
        },
        "database": {
            "path": DEFAULT_DB_PATH,
            "max_connections": DEFAULT_MAX_CONNECTIONS,
            "log_table_name": DEFAULT_LOG_TABLE_NAME,
            "group_table_prefix": DEFAULT_GROUP_TABLE_PREFIX,
        },
        "object_storage": {"script_path": "/path/to/upload.sh"},
        "llm": {"api_key": "", "base_url": None},
        "groups": [
            {
                "id": 12345678,
                "channel_id": 23456789,
                "live": {
                    "room_id": "12345678",
                    "online_msg": "XX开播了",
                    "offline_msg": "XX下播了",
                    "query_message": DEFAULT_LIVE_QUERY_MESSAGE,
                    "poll_interval_sec": DEFAULT_POLL_INTERVAL_SEC,
                },
                "agent": {
                    "model": DEFAULT_MODEL,
                    "dev_prompt": DEFAULT_DEV_PROMPT,
                    "user_prompt": DEFAULT_USER_PROMPT,
                    "aware_history_segments": DEFAULT_AWARE_HISTORY_SEGMENTS,
                    "known_members": {
                        "12345678": {"name": "你的昵称", "description": "你的主人", "aliases": []},
                        "23456789": {"name": "张三", "description": "你的敌人", "aliases": []},
                    },
                },
                "command": {
                    "mute": DEFAULT_MUTE_PATTERN,
                    "unmute": DEFAULT_UNMUTE_PATTERN,
                    "switch_model": DEFAULT_SWITCH_MODEL_PATTERN,
                    "dump_history": DEFAULT_DUMP_HISTORY_PATTERN,
                    "dump_log": DEFAULT_DUMP_LOG_PATTERN,
                    "max_dump_count": DEFAULT_MAX_DUMP_COUNT,
                    "admin_ids": [1234, 5678],
                },
            }
        ],
    }


def load_config(path: str | Path) -> tuple[AppConfig, bool]:
    """
    Returns (config, existed). When the file does not exist a template is written
    there and the parsed template is returned with existed=False.
    """
    p = Path(path)
    if not p.exists():
        p.parent.mkdir(parents=True, exist_ok=True)
        template = config_template()
        p.write_text(yaml.safe_dump(template, allow_unicode=True, sort_keys=False), encoding="utf-8")
        return (parse_config(template), False)

    try:
        payload = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to read config from {p}: {exc}") from exc
    return (parse_config(payload), True)
