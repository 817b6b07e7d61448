from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from controller.prompt_assembly import build_chat_messages
from controller.prompt_assembly import render_template
from misc.errors import LlmRequestError
from misc.names import render_known_members
from retrieval.service import build_window
from retrieval.service import format_history

if TYPE_CHECKING:
    from ingestion.diagnostics import DiagnosticLog
    from ingestion.service import MessageLogStore
    from live.monitor import Sender
    from session.models import GroupSession


def extract_reply(resp: Any) -> str:
    choices = getattr(resp, "choices", None) or []
    if not choices:
        raise LlmRequestError("model response has no choices")
    message = getattr(choices[0], "message", None)
    content = (getattr(message, "content", None) or "").strip()
    if not content:
        raise LlmRequestError("model response is empty")
    return content


def usage_line(model: str, resp: Any) -> str:
    usage = getattr(resp, "usage", None)
    if usage is None:
        return f"model={model} usage=unknown"
    return (
        f"model={model} prompt_tokens={getattr(usage, 'prompt_tokens', 0)} "
        f"completion_tokens={getattr(usage, 'completion_tokens', 0)} "
        f"total_tokens={getattr(usage, 'total_tokens', 0)}"
    )


class Responder:
    """
    One model call per trigger.

    Context is rebuilt from the message log each time: the known-member table, the
    newest history window and the triggering line are substituted into the group's
    prompt templates, and the reply is sent and logged through the messenger. Any
    failure is written to diagnostics and nothing is sent.
    """

    def __init__(
        self,
        *,
        client: Any,
        store: "MessageLogStore",
        messenger: "Sender",
        diagnostics: "DiagnosticLog",
    ) -> None:
        self.client = client
        self.store = store
        self.messenger = messenger
        self.diagnostics = diagnostics

    async def build_messages(
        self,
        session: "GroupSession",
        *,
        model: str,
        sender_id: int,
        sender_name: str,
        text: str,
        time_text: str,
    ) -> list[dict]:
        agent = session.agent
        known = session.is_known(sender_id)
        window = await build_window(self.store, session.group_id, agent.aware_history_segments)
        values = dict(
            members=render_known_members(session.known_members),
            history=format_history(window),
            message=f"{time_text} {sender_name}: {text}",
            known=known,
        )
        return build_chat_messages(
            model=model,
            dev_prompt=render_template(agent.dev_prompt, **values),
            user_prompt=render_template(agent.user_prompt, **values),
        )

    async def respond(
        self,
        session: "GroupSession",
        *,
        sender_id: int,
        sender_name: str,
        text: str,
        time_text: str,
        reply_to: int | None = None,
    ) -> bool:
        if session.agent is None or session.muted:
            return False
        if self.client is None:
            await self.diagnostics.warn(f"group={session.group_id} mentioned but no model client is configured")
            return False

        model = session.active_model
        try:
            messages = await self.build_messages(
                session,
                model=model,
                sender_id=sender_id,
                sender_name=sender_name,
                text=text,
                time_text=time_text,
            )
            resp = await asyncio.to_thread(
                self.client.chat.completions.create,
                model=model,
                messages=messages,
            )
            reply = extract_reply(resp)
        except Exception as e:
            await self.diagnostics.error(f"responder failed group={session.group_id} model={model}: {e}")
            return False

        await self.diagnostics.info(usage_line(model, resp))
        try:
            await self.messenger.send(session.group_id, reply, reply_to=reply_to)
        except Exception as e:
            await self.diagnostics.error(f"responder could not send group={session.group_id}: {e}")
            return False
        return True
