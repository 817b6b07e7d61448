from __future__ import annotations

from pathlib import Path

from config.loader import AppConfig
from config.loader import load_config
from controller.command_service import CommandService
from controller.responder import Responder
from db.pool import SqlitePool
from ingestion.diagnostics import DiagnosticLog
from ingestion.service import MessageLogStore
from ingestion.upload import ScriptUploader
from live.monitor import LiveMonitor
from misc.discord_platform import DiscordPlatform
from misc.errors import ConfigError
from misc.events_runtime import register_runtime_events
from misc.messenger import GroupMessenger
from misc.notices import NoticeHandler
from misc.runtime_deps import RuntimeDeps
from misc.scheduler import EventRouter
from misc.scheduler import EventScheduler
from session.registry import GroupSessionRegistry


def wire_bot_runtime(
    bot,
    *,
    config: AppConfig,
    config_path: str | Path,
    pool: SqlitePool,
    llm_client,
    live_client,
) -> RuntimeDeps:
    data_dir = Path(config.global_.data_dir)
    diagnostics = DiagnosticLog(
        pool,
        table=config.database.log_table_name,
        tz_name=config.global_.timezone,
    )
    uploader = ScriptUploader(config.object_storage.script_path) if config.object_storage else None
    if uploader is None:
        print("[CFG] object_storage.script_path not set: attachments stay local and exports are disabled")

    store = MessageLogStore(
        pool,
        table_prefix=config.database.group_table_prefix,
        tz_name=config.global_.timezone,
        data_dir=str(data_dir),
        diagnostics=diagnostics,
        uploader=uploader,
    )

    registry = GroupSessionRegistry()
    registry.load(config)

    platform = DiscordPlatform(bot, registry=registry, bot_name=config.global_.bot_name)
    messenger = GroupMessenger(platform, store=store, diagnostics=diagnostics)
    command_service = CommandService(registry, store=store, messenger=messenger, diagnostics=diagnostics)
    responder = Responder(client=llm_client, store=store, messenger=messenger, diagnostics=diagnostics)
    notices = NoticeHandler(platform=platform, messenger=messenger, store=store, diagnostics=diagnostics)

    router = EventRouter(
        registry=registry,
        store=store,
        platform=platform,
        messenger=messenger,
        commands=command_service,
        responder=responder,
        notices=notices,
        diagnostics=diagnostics,
        fetch_room=live_client.fetch_room,
    )
    scheduler = EventScheduler(
        store=store,
        router=router,
        registry=registry,
        diagnostics=diagnostics,
        max_sleep_sec=config.global_.max_sleep_sec,
    )

    def monitor_factory(session):
        monitor = LiveMonitor(
            session,
            fetch_room=live_client.fetch_room,
            messenger=messenger,
            diagnostics=diagnostics,
        )
        return monitor.run_forever

    async def reload_config() -> None:
        try:
            new_config, _ = load_config(config_path)
        except ConfigError as e:
            await diagnostics.error(f"config reload rejected: {e}")
            return
        # database, storage and global settings need a restart; groups reload in place
        await registry.reload(new_config, monitor_factory)
        await diagnostics.info(f"config reloaded from {config_path}")

    deps = RuntimeDeps(
        registry=registry,
        scheduler=scheduler,
        platform=platform,
        diagnostics=diagnostics,
        monitor_factory=monitor_factory,
        attachments_dir=data_dir / "attachments",
        reload_config=reload_config,
    )
    register_runtime_events(bot, deps=deps)
    return deps
