from __future__ import annotations

from config.defaults import SINGLE_PROMPT_MODELS

MEMBERS_PLACEHOLDER = "<!members!>"
HISTORY_PLACEHOLDER = "<!history!>"
MESSAGE_PLACEHOLDER = "<!message!>"
KNOW_PLACEHOLDER = "<!know!>"


def render_template(
    template: str,
    *,
    members: str,
    history: str,
    message: str,
    known: bool,
) -> str:
    out = template or ""
    out = out.replace(KNOW_PLACEHOLDER, "know" if known else "don't know")
    out = out.replace(MEMBERS_PLACEHOLDER, members)
    out = out.replace(HISTORY_PLACEHOLDER, history)
    # last, so user text is never expanded
    out = out.replace(MESSAGE_PLACEHOLDER, message)
    return out


def uses_single_prompt(model: str) -> bool:
    return model in SINGLE_PROMPT_MODELS or model.startswith("o1-")


def build_chat_messages(*, model: str, dev_prompt: str, user_prompt: str) -> list[dict]:
    # o1 models reject the developer role
    if uses_single_prompt(model):
        return [{"role": "user", "content": f"{dev_prompt}\n\n{user_prompt}".strip()}]
    return [
        {"role": "developer", "content": dev_prompt},
        {"role": "user", "content": user_prompt},
    ]
