from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Awaitable, Callable, Protocol

from live.client import LiveRoom
from misc.errors import LiveStatusError
from misc.events import utc_now

if TYPE_CHECKING:
    from ingestion.diagnostics import DiagnosticLog
    from session.models import GroupSession

UNKNOWN = "unknown"
OFFLINE = "offline"
ONLINE = "online"

FetchRoom = Callable[[str], Awaitable[LiveRoom]]


class Sender(Protocol):
    async def send(
        self,
        group_id: int,
        text: str,
        *,
        image_url: str | None = None,
        reply_to: int | None = None,
    ) -> int | None: ...


@dataclass(slots=True)
class LiveState:
    status: str = UNKNOWN
    last_poll_at: datetime | None = None
    last_room: LiveRoom | None = None


def next_transition(status: str, streaming: bool) -> tuple[str, str | None]:
    """
    Returns (new_status, notification) where notification is ONLINE, OFFLINE or None.

    The first observation after startup only records the state.
    """
    observed = ONLINE if streaming else OFFLINE
    if status == UNKNOWN or status == observed:
        return (observed, None)
    return (observed, observed)


def status_text(headline: str, room: LiveRoom) -> str:
    return f"{headline}\n链接:{room.url}\n{room.describe()}"


class LiveMonitor:
    """Polls one group's configured room and announces online/offline transitions."""

    def __init__(
        self,
        session: "GroupSession",
        *,
        fetch_room: FetchRoom,
        messenger: Sender,
        diagnostics: "DiagnosticLog",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if session.live is None:
            raise ValueError(f"group {session.group_id} has no live settings")
        self.session = session
        self.fetch_room = fetch_room
        self.messenger = messenger
        self.diagnostics = diagnostics
        self.sleep = sleep
        self.clock = clock

    async def poll_once(self) -> str | None:
        live = self.session.live
        state = self.session.live_state
        try:
            room = await self.fetch_room(live.room_id)
        except LiveStatusError as e:
            await self.diagnostics.warn(f"live poll failed group={self.session.group_id} room={live.room_id}: {e}")
            return None

        new_status, notification = next_transition(state.status, room.streaming)
        if new_status != state.status:
            print(f"[Live] group={self.session.group_id} room={live.room_id} {state.status} -> {new_status}")
        state.status = new_status
        state.last_room = room
        state.last_poll_at = self.clock()

        if notification == ONLINE:
            await self.messenger.send(
                self.session.group_id,
                status_text(live.online_msg, room),
                image_url=room.image,
            )
        elif notification == OFFLINE:
            await self.messenger.send(self.session.group_id, live.offline_msg)
        return notification

    async def run_forever(self) -> None:
        live = self.session.live
        print(f"[Live] monitor started group={self.session.group_id} room={live.room_id}")
        while True:
            try:
                await self.poll_once()
            except Exception as e:
                await self.diagnostics.error(f"live monitor group={self.session.group_id} error: {e}")
            await self.sleep(live.poll_interval_sec)
