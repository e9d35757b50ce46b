"""Request builder: turns a template, the stored history and one new message
into the payload for the chat-completion endpoint."""

import json
from pathlib import Path

from . import fmt
from .correlator import ToolCallCorrelator
from .errors import ConfigError, NothingToSend, RepeatedRole
from .history import ChatHistory
from .messages import Message, Role
from .template import RequestTemplate

REQUEST_DUMP_FILE = "last_request.json"
RESPONSE_DUMP_FILE = "last_response.json"


def resolve_model(
    history: ChatHistory, template: RequestTemplate, configured_model: str = ""
) -> str:
    """Pick the model name for a request.

    Precedence: the model stored with the chat, then the template's model,
    then the configured (CLI / config file / environment) model. Empty
    strings count as unset.
    """
    for candidate in (history.model, template.model, configured_model):
        if candidate:
            return candidate
    raise ConfigError(
        "no model configured: set 'model' in the template, pass --model, "
        "or set OAICOMPAT_MODEL_NAME"
    )


def stage_messages(history: ChatHistory, new_message: Message | None) -> list[Message]:
    """Return a copy of the history's messages with ``new_message`` appended.

    A tool message must answer an outstanding tool call; any other message
    must not repeat the role of the last stored message. Without a new
    message, the stored history is re-sent only if it ends with a user or
    tool turn.
    """
    staged = list(history.messages)
    if new_message is None:
        if not staged or staged[-1].role not in (Role.USER, Role.TOOL):
            raise NothingToSend(
                "no new message given and the chat does not end with a user or tool message"
            )
        return staged
    if new_message.role is Role.TOOL:
        ToolCallCorrelator(staged).validate(new_message.tool_call_id)
    elif staged and staged[-1].role is new_message.role:
        raise RepeatedRole(
            f"the chat already ends with a {new_message.role.value} message; "
            "re-send it without a new message instead"
        )
    staged.append(new_message)
    return staged


def build_request(
    template: RequestTemplate,
    history: ChatHistory,
    new_message: Message | None,
    *,
    model: str,
) -> dict:
    """Build ``{model, messages, tools?, tool_choice?, ...sampling}``.

    The history itself is not modified.
    """
    messages = stage_messages(history, new_message)
    payload = {"model": model, "messages": [m.to_dict() for m in messages]}
    payload.update(template.request_fields())
    return payload


def write_diagnostic(path: Path, data) -> None:
    """Write a verbatim JSON dump for debugging. Failures only warn."""
    try:
        Path(path).write_text(
            json.dumps(data, indent=2, ensure_ascii=False, default=str) + "\n",
            encoding="utf-8",
        )
    except OSError as e:
        fmt.warning(f"failed to write diagnostic file {path}: {e}")
