from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_RECORD_COLUMNS = ("message_id", "time", "sender_id", "sender_name", "type", "content", "interpret")


@dataclass(frozen=True, slots=True)
class LogRecord:
    message_id: int
    time: str
    sender_id: int
    sender_name: str
    seg_type: str
    content: str
    interpret: str
    # storage row id; None until written
    auto_id: int | None = None

    def as_row(self) -> tuple:
        return (
            self.message_id,
            self.time,
            self.sender_id,
            self.sender_name,
            self.seg_type,
            self.content,
            self.interpret,
        )

    @classmethod
    def from_row(cls, row: tuple) -> "LogRecord":
        auto_id, message_id, time, sender_id, sender_name, seg_type, content, interpret = row
        return cls(
            message_id=int(message_id or 0),
            time=str(time or ""),
            sender_id=int(sender_id or 0),
            sender_name=str(sender_name or ""),
            seg_type=str(seg_type or ""),
            content=str(content or ""),
            interpret=str(interpret or ""),
            auto_id=int(auto_id) if auto_id is not None else None,
        )


def tzinfo_for(name: str) -> tzinfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


def format_local_time(dt: datetime | None, tz_name: str) -> str:
    dt = dt or datetime.now(timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(tzinfo_for(tz_name)).strftime(TIME_FORMAT)
