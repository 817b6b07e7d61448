from __future__ import annotations

import asyncio
import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable


def connect_sqlite(db_path: str) -> sqlite3.Connection:
    # check_same_thread=False because connections are used from asyncio.to_thread workers
    conn = sqlite3.connect(db_path, check_same_thread=False)
    cur = conn.cursor()
    cur.execute("PRAGMA journal_mode=WAL;")
    cur.execute("PRAGMA synchronous=NORMAL;")
    conn.commit()
    return conn


class SqlitePool:
    """
    Bounded pool of sqlite3 connections.

    Connections are opened lazily up to max_connections. Callers borrow one with
    `async with pool.acquire() as conn:` and hand it back on every exit path; `run`
    wraps the common "borrow, run a *_sync function in a worker thread, release" shape.
    """

    def __init__(self, db_path: str, *, max_connections: int = 5) -> None:
        self.db_path = str(db_path)
        self.max_connections = max(1, int(max_connections))
        self._idle: asyncio.Queue[sqlite3.Connection] = asyncio.Queue()
        self._all: list[sqlite3.Connection] = []
        self._open_lock = asyncio.Lock()
        self._closed = False

    async def _borrow(self) -> sqlite3.Connection:
        if self._closed:
            raise RuntimeError("connection pool is closed")
        try:
            return self._idle.get_nowait()
        except asyncio.QueueEmpty:
            pass
        async with self._open_lock:
            if len(self._all) < self.max_connections:
                if self.db_path != ":memory:":
                    Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
                conn = await asyncio.to_thread(connect_sqlite, self.db_path)
                self._all.append(conn)
                return conn
        return await self._idle.get()

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[sqlite3.Connection]:
        conn = await self._borrow()
        try:
            yield conn
        finally:
            if self._closed:
                conn.close()
            else:
                self._idle.put_nowait(conn)

    async def run(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        async with self.acquire() as conn:
            return await asyncio.to_thread(fn, conn, *args, **kwargs)

    @property
    def size(self) -> int:
        return len(self._all)

    async def close(self) -> None:
        self._closed = True
        while True:
            try:
                conn = self._idle.get_nowait()
            except asyncio.QueueEmpty:
                break
            conn.close()
        self._all.clear()
        print(f"[DB] pool closed path={self.db_path}")
