import os
import sys
from pathlib import Path

import discord
from openai import OpenAI

from config.defaults import DEFAULT_CONFIG_PATH
from config.loader import load_config
from db.pool import SqlitePool
from live.client import BilibiliLiveClient
from misc.errors import ConfigError
from misc.runtime_wiring import wire_bot_runtime

# =========================
# ENV
# =========================
DISCORD_TOKEN = os.getenv("DISCORD_TOKEN")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
CONFIG_PATH = os.getenv("MOMO_CONFIG_PATH", DEFAULT_CONFIG_PATH)

if not DISCORD_TOKEN:
    raise RuntimeError("Missing DISCORD_TOKEN env var")

# =========================
# CONFIG
# =========================
try:
    CONFIG, CONFIG_EXISTED = load_config(CONFIG_PATH)
except ConfigError as e:
    print(f"[CFG] {e}")
    sys.exit(1)

if not CONFIG_EXISTED:
    print(f"[CFG] wrote a config template to {Path(CONFIG_PATH).resolve()}; fill it in and restart")
    sys.exit(0)

print(
    f"[CFG] groups={len(CONFIG.groups)} max_sleep_sec={CONFIG.global_.max_sleep_sec} "
    f"db={CONFIG.database.path} tz={CONFIG.global_.timezone} "
    f"upload={'on' if CONFIG.object_storage else 'off'}"
)

Path(CONFIG.global_.data_dir).mkdir(parents=True, exist_ok=True)

# =========================
# CLIENTS
# =========================
api_key = CONFIG.llm.api_key or OPENAI_API_KEY
if api_key:
    client = OpenAI(api_key=api_key, base_url=CONFIG.llm.base_url)
else:
    client = None
    print("[CFG] no OpenAI key (llm.api_key / OPENAI_API_KEY); mentions will not be answered")

pool = SqlitePool(CONFIG.database.path, max_connections=CONFIG.database.max_connections)
live_client = BilibiliLiveClient()


# =========================
# DISCORD BOT
# =========================
class MomoClient(discord.Client):
    async def close(self) -> None:
        deps = getattr(self, "momo_deps", None)
        if deps is not None:
            await deps.registry.shutdown()
            await deps.scheduler.drain()
        await live_client.aclose()
        await pool.close()
        await super().close()


intents = discord.Intents.default()
intents.message_content = True
intents.members = True
intents.reactions = True

bot = MomoClient(intents=intents)
bot.momo_deps = wire_bot_runtime(
    bot,
    config=CONFIG,
    config_path=CONFIG_PATH,
    pool=pool,
    llm_client=client,
    live_client=live_client,
)


bot.run(DISCORD_TOKEN)
