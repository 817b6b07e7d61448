from __future__ import annotations

from typing import Protocol

from ingestion.models import LogRecord
from misc.events import ATTACHMENT_SEGMENTS
from misc.events import SEGMENT_AT
from misc.events import SEGMENT_TEXT

_MIN_PAGE = 64


class PagedLog(Protocol):
    async def page_before(self, group_id: int, before_auto_id: int | None, limit: int) -> list[LogRecord]: ...


def segment_key(record: LogRecord) -> tuple[str, int]:
    """
    Counting unit for history windows: one per message id.

    Rows written without a platform message id (message_id 0) each form their own unit.
    """
    if record.message_id:
        return ("msg", int(record.message_id))
    return ("row", int(record.auto_id or 0))


async def build_window(store: PagedLog, group_id: int, max_segments: int) -> list[LogRecord]:
    """
    Walk the log backward and keep the rows of the newest `max_segments` messages.

    Returns rows in chronological order. Fewer available messages -> everything.
    """
    if max_segments <= 0:
        return []

    page_size = max(_MIN_PAGE, int(max_segments) * 4)
    seen: set[tuple[str, int]] = set()
    collected: list[LogRecord] = []
    before: int | None = None

    while True:
        page = await store.page_before(group_id, before, page_size)
        if not page:
            break
        for rec in page:
            key = segment_key(rec)
            if key not in seen:
                if len(seen) >= max_segments:
                    collected.reverse()
                    return collected
                seen.add(key)
            collected.append(rec)
        before = page[-1].auto_id
        if len(page) < page_size or before is None:
            break

    collected.reverse()
    return collected


def format_history(records: list[LogRecord]) -> str:
    lines: list[str] = []
    for rec in records:
        if rec.seg_type == SEGMENT_TEXT:
            lines.append(f"{rec.time} {rec.sender_name}: {rec.content}")
        elif rec.seg_type == SEGMENT_AT:
            lines.append(f"{rec.time} {rec.sender_name} AT {rec.interpret}")
        elif rec.seg_type in ATTACHMENT_SEGMENTS and rec.interpret:
            lines.append(f"{rec.time} {rec.sender_name}: [{rec.seg_type}] {rec.interpret}")
    return "\n".join(lines)
