from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from misc.errors import LiveStatusError
from misc.errors import RoomNotFound

ROOM_INFO_URL = "https://api.live.bilibili.com/room/v1/Room/get_info"
ROOM_PAGE_URL = "https://live.bilibili.com/{room_id}"


def room_url(room_id: str) -> str:
    return ROOM_PAGE_URL.format(room_id=room_id)


@dataclass(frozen=True, slots=True)
class LiveRoom:
    room_id: str
    streaming: bool
    title: str = ""
    description: str = ""
    area_name: str = ""
    online: int = 0
    attention: int = 0
    keyframe: str = ""
    user_cover: str = ""

    @property
    def url(self) -> str:
        return room_url(self.room_id)

    @property
    def image(self) -> str | None:
        """Keyframe, falling back to the cover."""
        return self.keyframe or self.user_cover or None

    def describe(self) -> str:
        return (
            f"分区:{self.area_name}\n"
            f"标题:{self.title}\n"
            f"简介:{self.description}\n"
            f"热度:{self.online}, 关注:{self.attention}"
        )


def _int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def parse_room(room_id: str, payload: Any) -> LiveRoom:
    if not isinstance(payload, dict):
        raise LiveStatusError(f"room {room_id}: unexpected response body")
    code = payload.get("code")
    if code is None or _int(code) != 0:
        raise RoomNotFound(room_id)
    data = payload.get("data")
    if not isinstance(data, dict):
        raise LiveStatusError(f"room {room_id}: response has no data")
    return LiveRoom(
        room_id=str(room_id),
        streaming=_int(data.get("live_status")) == 1,
        title=str(data.get("title") or ""),
        description=str(data.get("description") or ""),
        area_name=str(data.get("area_name") or ""),
        online=_int(data.get("online")),
        attention=_int(data.get("attention")),
        keyframe=str(data.get("keyframe") or ""),
        user_cover=str(data.get("user_cover") or ""),
    )


class BilibiliLiveClient:
    def __init__(self, *, timeout: float = 15.0, http: httpx.AsyncClient | None = None) -> None:
        self._http = http or httpx.AsyncClient(timeout=timeout)
        self._owns_http = http is None

    async def fetch_room(self, room_id: str) -> LiveRoom:
        try:
            response = await self._http.get(ROOM_INFO_URL, params={"room_id": room_id})
        except httpx.HTTPError as e:
            raise LiveStatusError(f"room {room_id}: request failed: {e}") from e
        if not response.is_success:
            raise LiveStatusError(f"room {room_id}: HTTP {response.status_code}: {response.text[:200]}")
        try:
            payload = response.json()
        except ValueError as e:
            raise LiveStatusError(f"room {room_id}: body is not JSON") from e
        return parse_room(room_id, payload)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
