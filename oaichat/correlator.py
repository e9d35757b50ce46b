"""Tool-call correlation: every tool response must answer a call the model issued."""

from .errors import UnknownToolCallId
from .messages import Message, Role


def outstanding_tool_calls(messages: list[Message]) -> list[str]:
    """Return ids of unanswered tool calls, in the order the model issued them.

    Scans backward over trailing tool messages to the most recent assistant
    message. Anything else at the end of the history (user, system, an
    assistant reply without tool_calls, or nothing) means no calls are open.
    """
    answered: set[str] = set()
    for msg in reversed(messages):
        if msg.role is Role.TOOL:
            answered.add(msg.tool_call_id)
            continue
        if msg.role is Role.ASSISTANT and msg.tool_calls:
            return [tc.id for tc in msg.tool_calls if tc.id not in answered]
        return []
    return []


def next_pending(messages: list[Message]) -> str | None:
    """Oldest outstanding tool call id, or None."""
    pending = outstanding_tool_calls(messages)
    return pending[0] if pending else None


class ToolCallCorrelator:
    """Outstanding tool calls for one request cycle.

    A validated id is consumed, so each call accepts at most one response.
    """

    def __init__(self, messages: list[Message]):
        self._outstanding = outstanding_tool_calls(messages)

    @property
    def outstanding(self) -> list[str]:
        return list(self._outstanding)

    def validate(self, tool_call_id: str | None) -> None:
        if tool_call_id not in self._outstanding:
            if self._outstanding:
                hint = f"outstanding: {', '.join(self._outstanding)}"
            else:
                hint = "no tool calls are outstanding"
            raise UnknownToolCallId(
                f"tool_call_id {tool_call_id!r} does not match a pending tool call ({hint})"
            )
        self._outstanding.remove(tool_call_id)
