from __future__ import annotations

import asyncio
import importlib
import tempfile
from pathlib import Path
from types import SimpleNamespace


class _DummyCompletions:
    def create(self, *args, **kwargs):
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="喵"))],
            usage=None,
        )


class _DummyClient:
    def __init__(self):
        self.chat = SimpleNamespace(completions=_DummyCompletions())


class _DummyLiveClient:
    async def fetch_room(self, room_id: str):
        raise RuntimeError("no network in smoke check")


def _try_import_or_skip(module_name: str, pip_name: str | None = None) -> bool:
    try:
        importlib.import_module(module_name)
        return True
    except ModuleNotFoundError:
        install_name = pip_name or module_name
        print(
            f"Smoke wiring check skipped: missing dependency '{module_name}'. "
            f"Install requirements and retry (e.g. `pip install {install_name}` "
            f"or `pip install -e .`)."
        )
        return False


async def _check(tmpdir: Path) -> None:
    import discord
    from config.loader import config_template
    from config.loader import parse_config
    from db.pool import SqlitePool
    from misc.runtime_wiring import wire_bot_runtime

    payload = config_template()
    payload["global"]["data_dir"] = str(tmpdir / "data")
    payload["database"]["path"] = str(tmpdir / "store.db")
    config = parse_config(payload)

    pool = SqlitePool(config.database.path, max_connections=2)
    bot = discord.Client(intents=discord.Intents.none())
    deps = wire_bot_runtime(
        bot,
        config=config,
        config_path=tmpdir / "config.yml",
        pool=pool,
        llm_client=_DummyClient(),
        live_client=_DummyLiveClient(),
    )

    expected_events = {
        "on_ready",
        "on_message",
        "on_member_join",
        "on_member_remove",
        "on_member_update",
        "on_raw_message_delete",
        "on_raw_reaction_add",
    }
    missing = sorted(name for name in expected_events if not callable(getattr(bot, name, None)))
    if missing:
        raise RuntimeError(f"Runtime events were not registered: {missing}")

    if deps.registry.get(config.groups[0].id) is None:
        raise RuntimeError("Configured group has no session")

    await pool.close()


def _main() -> int:
    if not _try_import_or_skip("discord", "discord.py"):
        return 0

    with tempfile.TemporaryDirectory() as tmp:
        asyncio.run(_check(Path(tmp)))

    print("Smoke wiring check passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
