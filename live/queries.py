from __future__ import annotations

import re
from typing import TYPE_CHECKING

from config.defaults import ROOM_QUERY_PREFIX
from live.client import LiveRoom
from live.monitor import FetchRoom
from live.monitor import Sender
from live.monitor import UNKNOWN
from live.monitor import status_text
from misc.errors import LiveStatusError
from misc.errors import RoomNotFound

if TYPE_CHECKING:
    from ingestion.diagnostics import DiagnosticLog
    from session.models import GroupSession

ROOM_QUERY_RE = re.compile(rf"^\s*{re.escape(ROOM_QUERY_PREFIX)}\s*(?P<room>\S+)\s*$")

GENERAL_ONLINE = "直播中"
GENERAL_OFFLINE = "不在直播"


async def _reply_with_room(
    messenger: Sender,
    group_id: int,
    room: LiveRoom,
    *,
    online_msg: str,
    offline_msg: str,
    reply_to: int | None,
) -> None:
    headline = online_msg if room.streaming else offline_msg
    await messenger.send(group_id, status_text(headline, room), image_url=room.image, reply_to=reply_to)


async def handle_room_query(
    group_id: int,
    text: str,
    *,
    fetch_room: FetchRoom,
    messenger: Sender,
    diagnostics: "DiagnosticLog",
    reply_to: int | None = None,
) -> bool:
    """`查询直播间 <room id>` for any room. Returns True when the text was such a query."""
    m = ROOM_QUERY_RE.match(text or "")
    if not m:
        return False
    room_id = m.group("room")
    if not room_id.isdigit():
        await messenger.send(group_id, "直播间不存在", reply_to=reply_to)
        return True
    try:
        room = await fetch_room(room_id)
    except RoomNotFound:
        await messenger.send(group_id, f"直播间{room_id}不存在", reply_to=reply_to)
        return True
    except LiveStatusError as e:
        await diagnostics.error(f"room query failed group={group_id} room={room_id}: {e}")
        return True
    await _reply_with_room(
        messenger,
        group_id,
        room,
        online_msg=GENERAL_ONLINE,
        offline_msg=GENERAL_OFFLINE,
        reply_to=reply_to,
    )
    return True


async def handle_local_query(
    session: "GroupSession",
    text: str,
    *,
    fetch_room: FetchRoom,
    messenger: Sender,
    diagnostics: "DiagnosticLog",
    reply_to: int | None = None,
) -> bool:
    """Reply with the last-known status of the group's own room."""
    live = session.live
    if live is None or not live.query_message or live.query_message not in (text or ""):
        return False

    room = session.live_state.last_room
    if session.live_state.status == UNKNOWN or room is None:
        try:
            room = await fetch_room(live.room_id)
        except RoomNotFound:
            await messenger.send(session.group_id, f"直播间{live.room_id}不存在", reply_to=reply_to)
            return True
        except LiveStatusError as e:
            await diagnostics.error(f"live query failed group={session.group_id} room={live.room_id}: {e}")
            return True

    await _reply_with_room(
        messenger,
        session.group_id,
        room,
        online_msg=live.online_msg,
        offline_msg=live.offline_msg,
        reply_to=reply_to,
    )
    return True
