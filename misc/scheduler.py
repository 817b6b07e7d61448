from __future__ import annotations

import asyncio
import random
from typing import TYPE_CHECKING, Awaitable, Callable

from config.defaults import POKE_MESSAGE
from live.queries import handle_local_query
from live.queries import handle_room_query
from misc.errors import StorageFailure
from misc.events import MessageEvent
from misc.events import Poke
from misc.names import lookup_display_name
from misc.names import resolve_display_name

if TYPE_CHECKING:
    from controller.command_service import CommandService
    from controller.responder import Responder
    from ingestion.diagnostics import DiagnosticLog
    from ingestion.service import MessageLogStore
    from live.monitor import FetchRoom
    from misc.messenger import GroupMessenger
    from misc.messenger import GroupPlatform
    from misc.notices import NoticeHandler
    from session.models import GroupSession
    from session.registry import GroupSessionRegistry


class EventRouter:
    """Decides what handles an event once its jitter delay has elapsed."""

    def __init__(
        self,
        *,
        registry: "GroupSessionRegistry",
        store: "MessageLogStore",
        platform: "GroupPlatform",
        messenger: "GroupMessenger",
        commands: "CommandService",
        responder: "Responder",
        notices: "NoticeHandler",
        diagnostics: "DiagnosticLog",
        fetch_room: "FetchRoom",
    ) -> None:
        self.registry = registry
        self.store = store
        self.platform = platform
        self.messenger = messenger
        self.commands = commands
        self.responder = responder
        self.notices = notices
        self.diagnostics = diagnostics
        self.fetch_room = fetch_room

    async def route(self, event) -> None:
        session = self.registry.get(event.group_id)
        if session is None:
            return
        if isinstance(event, MessageEvent):
            await self.on_message(session, event)
        elif isinstance(event, Poke):
            await self.on_poke(session, event)
        else:
            await self.notices.handle(session, event)

    async def on_message(self, session: "GroupSession", event: MessageEvent) -> None:
        text = event.text
        if text:
            if await self.commands.try_handle(session.group_id, event.sender_id, text, reply_to=event.message_id):
                return
            live_kwargs = dict(
                fetch_room=self.fetch_room,
                messenger=self.messenger,
                diagnostics=self.diagnostics,
                reply_to=event.message_id,
            )
            if await handle_room_query(session.group_id, text, **live_kwargs):
                return
            if await handle_local_query(session, text, **live_kwargs):
                return
        if event.mentions_bot:
            await self.responder.respond(
                session,
                sender_id=event.sender_id,
                sender_name=resolve_display_name(
                    session.known_members, event.sender_id, event.sender_card, event.sender_nickname
                ),
                text=text,
                time_text=self.store.now_text(event.time),
                reply_to=event.message_id,
            )

    async def on_poke(self, session: "GroupSession", event: Poke) -> None:
        if int(event.target_id) != int(self.platform.bot_id):
            return
        sender_name = await lookup_display_name(
            self.platform.member_names, session.known_members, session.group_id, event.user_id
        )
        await self.responder.respond(
            session,
            sender_id=event.user_id,
            sender_name=sender_name,
            text=POKE_MESSAGE,
            time_text=self.store.now_text(event.time),
        )


class EventScheduler:
    """
    Entry point for every platform event.

    Messages are written to the log before `ingest` returns, in call order. Handling
    of every event then runs as its own task after a random delay in
    [0, max_sleep_sec), so the bot does not answer instantly and one slow handler
    never holds up another.
    """

    def __init__(
        self,
        *,
        store: "MessageLogStore",
        router: EventRouter,
        registry: "GroupSessionRegistry",
        diagnostics: "DiagnosticLog",
        max_sleep_sec: float,
        delay_source: Callable[[float, float], float] = random.uniform,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.router = router
        self.registry = registry
        self.diagnostics = diagnostics
        self.max_sleep_sec = float(max_sleep_sec)
        self.delay_source = delay_source
        self.sleep = sleep
        self._tasks: set[asyncio.Task] = set()

    def next_delay(self) -> float:
        if self.max_sleep_sec <= 0:
            return 0.0
        return max(0.0, float(self.delay_source(0.0, self.max_sleep_sec)))

    async def ingest(self, event) -> asyncio.Task | None:
        session = self.registry.get(event.group_id)
        if session is None:
            return None

        if isinstance(event, MessageEvent):
            try:
                await self.store.append(event.group_id, event, session.known_members)
            except StorageFailure as e:
                await self.diagnostics.error(
                    f"message log append failed group={event.group_id} message={event.message_id}: {e}"
                )

        delay = self.next_delay()
        task = asyncio.create_task(self._dispatch(event, delay))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _dispatch(self, event, delay: float) -> None:
        if delay > 0:
            await self.sleep(delay)
        try:
            await self.router.route(event)
        except Exception as e:
            await self.diagnostics.error(
                f"handler for {type(event).__name__} group={event.group_id} failed: {e}"
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
