"""Public library API for oaichat: ChatSession class and Result dataclass."""

import copy
from dataclasses import dataclass
from pathlib import Path

from .errors import PersistFailure
from .history import history_path, load
from .messages import Message
from .template import RequestTemplate, load_template
from .transport import ApiConfig
from .turn import run_turn


@dataclass
class Result:
    """Result of one send() call."""

    answer: str | None
    reply: Message | None
    messages: list[dict]
    persist_error: PersistFailure | None = None


class ChatSession:
    """Programmatic interface to a persistent chat.

    Each call to send() or send_tool_result() is one turn: the history is
    reloaded from disk, extended and saved again, exactly as the CLI does.
    """

    def __init__(
        self,
        chat_id: str,
        *,
        api: ApiConfig,
        chats_dir: str | Path = "chats",
        config_dir: str | Path | None = None,
        template: RequestTemplate | None = None,
        dump_dir: str | Path | None = None,
    ):
        self.chat_id = chat_id
        self.api = api
        self.chats_dir = Path(chats_dir)
        self.dump_dir = Path(dump_dir) if dump_dir is not None else None
        if template is None:
            template = (
                load_template(config_dir) if config_dir is not None else RequestTemplate()
            )
        self.template = template

    def _run(self, message: Message | None, **kwargs) -> Result:
        result = run_turn(
            self.chat_id,
            message,
            chats_dir=self.chats_dir,
            template=self.template,
            api=self.api,
            dump_dir=self.dump_dir,
            **kwargs,
        )
        return Result(
            answer=result.reply.text if result.reply else None,
            reply=result.reply,
            messages=copy.deepcopy([m.to_dict() for m in result.history.messages]),
            persist_error=result.persist_error,
        )

    def send(self, text: str, **kwargs) -> Result:
        """Send a user message and return the model's reply."""
        return self._run(Message.user(text), **kwargs)

    def send_tool_result(
        self, text: str, *, name: str, tool_call_id: str | None = None, **kwargs
    ) -> Result:
        """Answer a pending tool call (the oldest one when no id is given)."""
        return self._run(Message.tool(text, tool_call_id, name=name), **kwargs)

    def resend(self, **kwargs) -> Result:
        """Re-send the stored history when it ends with a user or tool message."""
        return self._run(None, **kwargs)

    def messages(self) -> list[Message]:
        """Messages currently stored on disk (empty for a new chat)."""
        path = history_path(self.chat_id, self.chats_dir)
        if not path.is_file():
            return []
        return load(path).messages
