from __future__ import annotations

import asyncio
import csv
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping

from config.loader import KnownMember
from db.pool import SqlitePool
from ingestion.diagnostics import DiagnosticLog
from ingestion.models import LOG_RECORD_COLUMNS
from ingestion.models import LogRecord
from ingestion.models import format_local_time
from ingestion.store import ensure_group_table_sync
from ingestion.store import fetch_group_rows_before_sync
from ingestion.store import fetch_latest_group_rows_sync
from ingestion.store import find_group_rows_by_message_id_sync
from ingestion.store import group_table_name
from ingestion.store import insert_group_records_sync
from ingestion.store import table_exists_sync
from ingestion.store import SQLITE_MAX_INTEGER
from ingestion.upload import Uploader
from misc.errors import InvalidArgument
from misc.errors import StorageFailure
from misc.errors import UploadError
from misc.events import ATTACHMENT_SEGMENTS
from misc.events import MessageEvent
from misc.events import MessageSegment
from misc.events import SEGMENT_AT
from misc.events import SEGMENT_OTHER
from misc.events import SEGMENT_REPLY
from misc.events import SEGMENT_TEXT
from misc.names import resolve_display_name


@dataclass(frozen=True, slots=True)
class ExportResult:
    count: int
    address: str


def _write_csv_sync(path: Path, header: tuple[str, ...], rows: list[tuple]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    # utf-8-sig so spreadsheet tools pick up the encoding
    with path.open("w", encoding="utf-8-sig", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(header)
        writer.writerows(rows)


def _check_export_count(count: int) -> None:
    if count < 1:
        raise InvalidArgument("count must be at least 1")
    if count > SQLITE_MAX_INTEGER:
        raise InvalidArgument(f"count must be at most {SQLITE_MAX_INTEGER}")


class MessageLogStore:
    """
    Append-only per-group message log.

    Each group gets its own table, created on first write. Writes for one group are
    serialised by a per-group lock that is taken before the first suspension point of
    `append`, so records land in the order `append` was called.
    """

    def __init__(
        self,
        pool: SqlitePool,
        *,
        table_prefix: str,
        tz_name: str,
        data_dir: str,
        diagnostics: DiagnosticLog,
        uploader: Uploader | None = None,
    ) -> None:
        self.pool = pool
        self.table_prefix = table_prefix
        self.tz_name = tz_name
        self.data_dir = Path(data_dir)
        self.diagnostics = diagnostics
        self.uploader = uploader
        self._group_locks: dict[int, asyncio.Lock] = {}
        self._ready_tables: set[str] = set()

    def table_for(self, group_id: int) -> str:
        return group_table_name(self.table_prefix, group_id)

    def lock_for(self, group_id: int) -> asyncio.Lock:
        lock = self._group_locks.get(int(group_id))
        if lock is None:
            lock = asyncio.Lock()
            self._group_locks[int(group_id)] = lock
        return lock

    def now_text(self, dt: datetime | None = None) -> str:
        return format_local_time(dt, self.tz_name)

    async def _ensure_table(self, table: str) -> None:
        if table in self._ready_tables:
            return
        await self.pool.run(ensure_group_table_sync, table)
        self._ready_tables.add(table)

    async def _table_ready(self, table: str) -> bool:
        if table in self._ready_tables:
            return True
        exists = await self.pool.run(table_exists_sync, table)
        if exists:
            self._ready_tables.add(table)
        return bool(exists)

    async def _upload_or_empty(self, local_path: str, *, group_id: int, message_id: int) -> str:
        if self.uploader is None or not local_path:
            return ""
        try:
            return await self.uploader.upload(local_path)
        except UploadError as e:
            await self.diagnostics.error(
                f"upload failed group={group_id} message={message_id} file={local_path}: {e} stderr={e.stderr}"
            )
            return ""

    async def _segment_fields(
        self,
        seg: MessageSegment,
        *,
        group_id: int,
        message_id: int,
        known_members: Mapping[str, KnownMember] | None,
    ) -> tuple[str, str]:
        if seg.kind in ATTACHMENT_SEGMENTS:
            local_path = seg.content
            if seg.fetch is not None:
                try:
                    local_path = await seg.fetch()
                except Exception as e:
                    await self.diagnostics.error(
                        f"attachment download failed group={group_id} message={message_id}: {e}"
                    )
                    return ("", "")
            address = await self._upload_or_empty(local_path, group_id=group_id, message_id=message_id)
            return (local_path or "", address)
        if seg.kind == SEGMENT_AT:
            name = seg.interpret
            if not name:
                try:
                    name = resolve_display_name(known_members, int(seg.content))
                except ValueError:
                    name = seg.content
            return (seg.content, name)
        if seg.kind == SEGMENT_REPLY:
            return (seg.content, "message_id")
        if seg.kind == SEGMENT_TEXT:
            return (seg.content, "text")
        if seg.kind == SEGMENT_OTHER:
            return (seg.content, seg.interpret or "")
        return ("", "")

    async def build_records(
        self,
        group_id: int,
        event: MessageEvent,
        known_members: Mapping[str, KnownMember] | None = None,
    ) -> list[LogRecord]:
        sender_name = resolve_display_name(
            known_members, event.sender_id, event.sender_card, event.sender_nickname
        )
        time_text = self.now_text(event.time)
        records: list[LogRecord] = []
        for seg in event.segments:
            content, interpret = await self._segment_fields(
                seg,
                group_id=group_id,
                message_id=event.message_id,
                known_members=known_members,
            )
            records.append(
                LogRecord(
                    message_id=int(event.message_id),
                    time=time_text,
                    sender_id=int(event.sender_id),
                    sender_name=sender_name,
                    seg_type=seg.kind,
                    content=content,
                    interpret=interpret,
                )
            )
        return records

    async def _write(self, group_id: int, records: list[LogRecord]) -> list[LogRecord]:
        if not records:
            return []
        table = self.table_for(group_id)
        try:
            await self._ensure_table(table)
            return await self.pool.run(insert_group_records_sync, table, records)
        except sqlite3.Error as e:
            raise StorageFailure(f"write to {table} failed: {e}") from e

    async def append(
        self,
        group_id: int,
        event: MessageEvent,
        known_members: Mapping[str, KnownMember] | None = None,
    ) -> list[LogRecord]:
        async with self.lock_for(group_id):
            records = await self.build_records(group_id, event, known_members)
            return await self._write(group_id, records)

    async def append_records(self, group_id: int, records: list[LogRecord]) -> list[LogRecord]:
        async with self.lock_for(group_id):
            return await self._write(group_id, list(records))

    async def tail(self, group_id: int, max_records: int) -> list[LogRecord]:
        """Most recent records, oldest first."""
        if max_records <= 0:
            return []
        table = self.table_for(group_id)
        try:
            if not await self._table_ready(table):
                return []
            limit = min(int(max_records), SQLITE_MAX_INTEGER)
            return await self.pool.run(fetch_latest_group_rows_sync, table, limit)
        except sqlite3.Error as e:
            raise StorageFailure(f"read from {table} failed: {e}") from e

    async def page_before(self, group_id: int, before_auto_id: int | None, limit: int) -> list[LogRecord]:
        """Records strictly older than before_auto_id, newest first."""
        table = self.table_for(group_id)
        try:
            if not await self._table_ready(table):
                return []
            limit = min(int(limit), SQLITE_MAX_INTEGER)
            return await self.pool.run(fetch_group_rows_before_sync, table, before_auto_id, limit)
        except sqlite3.Error as e:
            raise StorageFailure(f"read from {table} failed: {e}") from e

    async def find(self, group_id: int, message_id: int) -> list[LogRecord]:
        table = self.table_for(group_id)
        try:
            if not await self._table_ready(table):
                return []
            return await self.pool.run(find_group_rows_by_message_id_sync, table, int(message_id))
        except sqlite3.Error as e:
            raise StorageFailure(f"read from {table} failed: {e}") from e

    async def _upload_export(self, path: Path, rows: list[tuple], header: tuple[str, ...]) -> str:
        if self.uploader is None:
            raise UploadError("no upload script is configured")
        await asyncio.to_thread(_write_csv_sync, path, header, rows)
        address = await self.uploader.upload(str(path))
        try:
            path.unlink()
        except OSError as e:
            print(f"[Export] could not remove {path}: {e}")
        return address

    def _export_path(self, stem: str) -> Path:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")
        return self.data_dir / "exports" / f"{stem}_{stamp}.csv"

    async def export(self, group_id: int, count: int) -> ExportResult:
        _check_export_count(count)
        records = await self.tail(group_id, count)
        rows = [rec.as_row() for rec in records]
        address = await self._upload_export(
            self._export_path(self.table_for(group_id)),
            rows,
            LOG_RECORD_COLUMNS,
        )
        return ExportResult(count=len(rows), address=address)

    async def export_diagnostics(self, count: int) -> ExportResult:
        _check_export_count(count)
        rows = await self.diagnostics.tail(count)
        address = await self._upload_export(
            self._export_path(self.diagnostics.table),
            list(rows),
            ("time", "level", "content"),
        )
        return ExportResult(count=len(rows), address=address)
