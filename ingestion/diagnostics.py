from __future__ import annotations

import asyncio
import sqlite3

from db.pool import SqlitePool
from ingestion.models import format_local_time
from ingestion.store import ensure_log_table_sync
from ingestion.store import fetch_latest_logs_sync
from ingestion.store import insert_log_sync
from ingestion.store import SQLITE_MAX_INTEGER
from misc.errors import StorageFailure

LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")


class DiagnosticLog:
    """Shared operational log table. Every entry is also printed."""

    def __init__(self, pool: SqlitePool, *, table: str, tz_name: str) -> None:
        self.pool = pool
        self.table = table
        self.tz_name = tz_name
        self._ready = False
        self._ready_lock = asyncio.Lock()

    async def _ensure(self) -> None:
        if self._ready:
            return
        async with self._ready_lock:
            if not self._ready:
                await self.pool.run(ensure_log_table_sync, self.table)
                self._ready = True

    async def write(self, level: str, content: str) -> None:
        level = (level or "INFO").upper()
        if level not in LEVELS:
            level = "INFO"
        print(f"[{level}] {content}")
        try:
            await self._ensure()
            await self.pool.run(insert_log_sync, self.table, format_local_time(None, self.tz_name), level, content)
        except (sqlite3.Error, RuntimeError) as e:
            print(f"[DiagLog] failed to persist entry: {e}")

    async def debug(self, content: str) -> None:
        await self.write("DEBUG", content)

    async def info(self, content: str) -> None:
        await self.write("INFO", content)

    async def warn(self, content: str) -> None:
        await self.write("WARN", content)

    async def error(self, content: str) -> None:
        await self.write("ERROR", content)

    async def tail(self, count: int) -> list[tuple[str, str, str]]:
        """Most recent (time, level, content) entries, oldest first."""
        try:
            await self._ensure()
            limit = min(max(0, int(count)), SQLITE_MAX_INTEGER)
            return await self.pool.run(fetch_latest_logs_sync, self.table, limit)
        except sqlite3.Error as e:
            raise StorageFailure(f"reading {self.table} failed: {e}") from e
