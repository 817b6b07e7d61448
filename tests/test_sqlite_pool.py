from __future__ import annotations

import asyncio
import sqlite3
import tempfile
import unittest
from pathlib import Path

from db.pool import SqlitePool
from ingestion.diagnostics import DiagnosticLog
from ingestion.store import ensure_group_table_sync
from ingestion.store import group_table_name
from ingestion.store import table_exists_sync


class SqlitePoolTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.pool = SqlitePool(str(Path(self.tmp.name) / "nested" / "store.db"), max_connections=2)

    async def asyncTearDown(self):
        await self.pool.close()
        self.tmp.cleanup()

    async def test_never_opens_more_than_max_connections(self):
        gate = asyncio.Event()
        inside = 0
        peak = 0

        async def borrow():
            nonlocal inside, peak
            async with self.pool.acquire():
                inside += 1
                peak = max(peak, inside)
                await gate.wait()
                inside -= 1

        tasks = [asyncio.create_task(borrow()) for _ in range(5)]
        for _ in range(200):
            if inside == 2:
                break
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.05)
        self.assertEqual(peak, 2)
        gate.set()
        await asyncio.gather(*tasks)
        self.assertEqual(self.pool.size, 2)

    async def test_connection_is_returned_after_error(self):
        def boom(conn):
            conn.execute("SELECT * FROM missing_table")

        for _ in range(3):
            with self.assertRaises(sqlite3.OperationalError):
                await self.pool.run(boom)
        self.assertEqual(self.pool.size, 1)
        self.assertEqual(await self.pool.run(lambda conn: conn.execute("SELECT 1").fetchone()[0]), 1)

    async def test_group_tables_are_created_on_demand(self):
        table = group_table_name("message", 42)
        self.assertEqual(table, "message42")
        self.assertFalse(await self.pool.run(table_exists_sync, table))
        await self.pool.run(ensure_group_table_sync, table)
        await self.pool.run(ensure_group_table_sync, table)
        self.assertTrue(await self.pool.run(table_exists_sync, table))

    async def test_closed_pool_refuses_work(self):
        await self.pool.close()
        with self.assertRaises(RuntimeError):
            await self.pool.run(lambda conn: None)


class DiagnosticLogTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.pool = SqlitePool(str(Path(self.tmp.name) / "store.db"))
        self.log = DiagnosticLog(self.pool, table="bot_log", tz_name="Asia/Shanghai")

    async def asyncTearDown(self):
        await self.pool.close()
        self.tmp.cleanup()

    async def test_entries_come_back_oldest_first(self):
        await self.log.info("one")
        await self.log.warn("two")
        await self.log.error("three")
        entries = await self.log.tail(2)
        self.assertEqual([(e[1], e[2]) for e in entries], [("WARN", "two"), ("ERROR", "three")])

    async def test_write_failure_does_not_raise(self):
        await self.pool.close()
        await self.log.error("still fine")
