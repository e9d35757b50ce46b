"""Turn execution: Loaded -> Built -> Dispatched -> Applied -> Persisted.

Every failure before dispatch is raised without touching the network or the
history file. A failed save after a successful exchange does not fail the
turn: the reply is returned together with the PersistFailure.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Callable

from . import transport
from .correlator import next_pending
from .errors import ConfigError, NothingToSend, PersistFailure
from .history import ChatHistory, append, history_path, open_or_create, save
from .messages import Message, Role
from .request import (
    REQUEST_DUMP_FILE,
    RESPONSE_DUMP_FILE,
    build_request,
    resolve_model,
    stage_messages,
    write_diagnostic,
)
from .template import RequestTemplate
from .transport import ApiConfig

logger = logging.getLogger(__name__)


class TurnState(Enum):
    LOADED = "loaded"
    BUILT = "built"
    DISPATCHED = "dispatched"
    APPLIED = "applied"
    PERSISTED = "persisted"


@dataclass
class TurnResult:
    state: TurnState
    history: ChatHistory
    path: Path
    reply: Message | None = None
    finish_reason: str | None = None
    persist_error: PersistFailure | None = None

    @property
    def persisted(self) -> bool:
        return self.state is TurnState.PERSISTED


def _enter(chat_id: str, state: TurnState) -> TurnState:
    logger.debug("chat %s: %s", chat_id, state.value)
    return state


def run_turn(
    chat_id: str,
    new_message: Message | None,
    *,
    chats_dir,
    template: RequestTemplate,
    api: ApiConfig | None = None,
    no_network: bool = False,
    dump_dir: Path | None = None,
    send: Callable | None = None,
) -> TurnResult:
    """Run one exchange for ``chat_id``.

    ``send`` defaults to transport.send and is called at most once.
    With ``no_network`` the new message is validated, appended and saved
    without contacting the endpoint, and ``api`` may be omitted.
    A tool message without a tool_call_id answers the oldest pending call.
    """
    if api is None and not no_network:
        raise ConfigError("no endpoint configured")
    path = history_path(chat_id, chats_dir)
    history = open_or_create(
        chat_id,
        chats_dir,
        model=template.model or (api.model if api else ""),
        seed_messages=template.messages,
    )
    state = _enter(chat_id, TurnState.LOADED)

    if (
        new_message is not None
        and new_message.role is Role.TOOL
        and new_message.tool_call_id is None
    ):
        new_message = replace(new_message, tool_call_id=next_pending(history.messages))

    if no_network:
        if new_message is None:
            raise NothingToSend("no message to append")
        stage_messages(history, new_message)
        append(history, new_message)
        state = _enter(chat_id, TurnState.APPLIED)
        save(history, path)
        return TurnResult(state=_enter(chat_id, TurnState.PERSISTED), history=history, path=path)

    model = resolve_model(history, template, api.model)
    payload = build_request(template, history, new_message, model=model)
    state = _enter(chat_id, TurnState.BUILT)

    request_dump = response_dump = None
    if dump_dir is not None:
        request_dump = Path(dump_dir) / REQUEST_DUMP_FILE
        response_dump = Path(dump_dir) / RESPONSE_DUMP_FILE
        write_diagnostic(request_dump, payload)

    send = send or transport.send
    reply, finish_reason = send(payload, api, response_dump=response_dump)
    state = _enter(chat_id, TurnState.DISPATCHED)

    if new_message is not None:
        append(history, new_message)
    append(history, reply)
    state = _enter(chat_id, TurnState.APPLIED)

    result = TurnResult(
        state=state,
        history=history,
        path=path,
        reply=reply,
        finish_reason=finish_reason,
    )
    try:
        save(history, path)
    except PersistFailure as e:
        logger.debug("chat %s: reply received but not saved: %s", chat_id, e)
        result.persist_error = e
        return result
    result.state = _enter(chat_id, TurnState.PERSISTED)
    return result
