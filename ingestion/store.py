from __future__ import annotations

import sqlite3

from ingestion.models import LogRecord

# Table names are validated identifiers (see config.loader); values are always bound.

_GROUP_COLUMNS = "auto_id, message_id, time, sender_id, sender_name, type, content, interpret"
SQLITE_MAX_INTEGER = 2**63 - 1


def group_table_name(prefix: str, group_id: int) -> str:
    return f"{prefix}{int(group_id)}"


def ensure_log_table_sync(conn: sqlite3.Connection, table: str) -> None:
    cur = conn.cursor()
    cur.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {table} (
            auto_id INTEGER PRIMARY KEY,
            time TEXT,
            level TEXT,
            content TEXT
        )
        """
    )
    cur.execute(f"CREATE INDEX IF NOT EXISTS idx_{table}_time ON {table}(time)")
    conn.commit()


def ensure_group_table_sync(conn: sqlite3.Connection, table: str) -> None:
    cur = conn.cursor()
    cur.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {table} (
            auto_id INTEGER PRIMARY KEY,
            message_id INTEGER,
            time TEXT,
            sender_id INTEGER,
            sender_name TEXT,
            type TEXT,
            content TEXT,
            interpret TEXT
        )
        """
    )
    cur.execute(f"CREATE INDEX IF NOT EXISTS idx_{table}_msg_id ON {table}(message_id)")
    cur.execute(f"CREATE INDEX IF NOT EXISTS idx_{table}_time ON {table}(time)")
    conn.commit()


def table_exists_sync(conn: sqlite3.Connection, table: str) -> bool:
    cur = conn.cursor()
    cur.execute("SELECT 1 FROM sqlite_master WHERE type='table' AND name = ? LIMIT 1", (table,))
    return cur.fetchone() is not None


def insert_log_sync(conn: sqlite3.Connection, table: str, time: str, level: str, content: str) -> int:
    cur = conn.cursor()
    cur.execute(
        f"INSERT INTO {table} (time, level, content) VALUES (?, ?, ?)",
        (time, level, content),
    )
    conn.commit()
    return int(cur.lastrowid)


def fetch_latest_logs_sync(conn: sqlite3.Connection, table: str, limit: int) -> list[tuple[str, str, str]]:
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT time, level, content
        FROM (
            SELECT auto_id, time, level, content
            FROM {table}
            ORDER BY auto_id DESC
            LIMIT ?
        )
        ORDER BY auto_id ASC
        """,
        (int(limit),),
    )
    return cur.fetchall()


def insert_group_records_sync(conn: sqlite3.Connection, table: str, records: list[LogRecord]) -> list[LogRecord]:
    """Insert all rows of one message in a single transaction; returns them with auto_id set."""
    cur = conn.cursor()
    written: list[LogRecord] = []
    try:
        for rec in records:
            cur.execute(
                f"""
                INSERT INTO {table} (message_id, time, sender_id, sender_name, type, content, interpret)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                rec.as_row(),
            )
            written.append(
                LogRecord(
                    message_id=rec.message_id,
                    time=rec.time,
                    sender_id=rec.sender_id,
                    sender_name=rec.sender_name,
                    seg_type=rec.seg_type,
                    content=rec.content,
                    interpret=rec.interpret,
                    auto_id=int(cur.lastrowid),
                )
            )
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise
    return written


def fetch_group_rows_before_sync(
    conn: sqlite3.Connection,
    table: str,
    before_auto_id: int | None,
    limit: int,
) -> list[LogRecord]:
    """Newest first."""
    cur = conn.cursor()
    if before_auto_id is None:
        cur.execute(
            f"SELECT {_GROUP_COLUMNS} FROM {table} ORDER BY auto_id DESC LIMIT ?",
            (int(limit),),
        )
    else:
        cur.execute(
            f"SELECT {_GROUP_COLUMNS} FROM {table} WHERE auto_id < ? ORDER BY auto_id DESC LIMIT ?",
            (int(before_auto_id), int(limit)),
        )
    return [LogRecord.from_row(r) for r in cur.fetchall()]


def fetch_latest_group_rows_sync(conn: sqlite3.Connection, table: str, limit: int) -> list[LogRecord]:
    """Oldest first."""
    rows = fetch_group_rows_before_sync(conn, table, None, limit)
    rows.reverse()
    return rows


def find_group_rows_by_message_id_sync(conn: sqlite3.Connection, table: str, message_id: int) -> list[LogRecord]:
    cur = conn.cursor()
    cur.execute(
        f"SELECT {_GROUP_COLUMNS} FROM {table} WHERE message_id = ? ORDER BY auto_id ASC",
        (int(message_id),),
    )
    return [LogRecord.from_row(r) for r in cur.fetchall()]
