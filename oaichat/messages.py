"""Role-tagged chat messages and tool calls.

Shapes are checked at the JSON boundary. Stored history is parsed strictly
(unknown keys are rejected with MalformedHistory); provider replies are parsed
with ``strict=False``, which ignores provider-specific extra keys but still
raises MalformedResponse for anything the conversation depends on.
"""

import copy
import json
from dataclasses import dataclass
from enum import Enum

import tiktoken

from .errors import MalformedHistory, MalformedResponse


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


_MESSAGE_KEYS = {"role", "content", "name", "tool_call_id", "tool_calls"}
_TOOL_CALL_KEYS = {"id", "type", "function"}
_FUNCTION_KEYS = {"name", "arguments"}

_encoder = None


def _error_class(strict: bool) -> type:
    return MalformedHistory if strict else MalformedResponse


def _check_keys(data: dict, allowed: set[str], where: str, strict: bool) -> None:
    if not strict:
        return
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise MalformedHistory(f"{where}: unknown keys {', '.join(unknown)}")


def _parse_content(value, where: str, err: type):
    """Accept a string, null, or a list of text/image_url parts."""
    if value is None or isinstance(value, str):
        return value
    if not isinstance(value, list):
        raise err(
            f"{where}.content: expected string, list or null, got {type(value).__name__}"
        )
    for i, part in enumerate(value):
        part_where = f"{where}.content[{i}]"
        if not isinstance(part, dict):
            raise err(f"{part_where}: expected object, got {type(part).__name__}")
        ptype = part.get("type")
        if ptype == "text":
            if not isinstance(part.get("text"), str):
                raise err(f"{part_where}.text: expected string")
        elif ptype == "image_url":
            image = part.get("image_url")
            if not isinstance(image, dict) or not isinstance(image.get("url"), str):
                raise err(f"{part_where}.image_url: expected object with a 'url' string")
        else:
            raise err(f"{part_where}.type: unknown content part type {ptype!r}")
    return copy.deepcopy(value)


@dataclass
class FunctionCall:
    name: str
    arguments: str


@dataclass
class ToolCall:
    """A function invocation requested by the model.

    ``id`` is generated by the remote service and kept verbatim.
    """

    id: str
    function: FunctionCall
    type: str = "function"

    @classmethod
    def from_dict(cls, data, where: str = "tool_call", *, strict: bool = True):
        err = _error_class(strict)
        if not isinstance(data, dict):
            raise err(f"{where}: expected object, got {type(data).__name__}")
        _check_keys(data, _TOOL_CALL_KEYS, where, strict)

        call_id = data.get("id")
        if not isinstance(call_id, str) or not call_id:
            raise err(f"{where}.id: expected non-empty string")
        if data.get("type") != "function":
            raise err(f"{where}.type: expected 'function', got {data.get('type')!r}")

        fn = data.get("function")
        if not isinstance(fn, dict):
            raise err(f"{where}.function: expected object")
        _check_keys(fn, _FUNCTION_KEYS, f"{where}.function", strict)
        name = fn.get("name")
        arguments = fn.get("arguments")
        if not isinstance(name, str) or not name:
            raise err(f"{where}.function.name: expected non-empty string")
        if not isinstance(arguments, str):
            raise err(f"{where}.function.arguments: expected JSON-encoded string")

        return cls(id=call_id, function=FunctionCall(name=name, arguments=arguments))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "function": {
                "name": self.function.name,
                "arguments": self.function.arguments,
            },
        }


@dataclass
class Message:
    role: Role
    content: str | list[dict] | None = None
    name: str | None = None
    tool_call_id: str | None = None
    tool_calls: list[ToolCall] | None = None

    @classmethod
    def system(cls, text: str) -> "Message":
        return cls(role=Role.SYSTEM, content=text)

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(role=Role.USER, content=text)

    @classmethod
    def tool(
        cls, text: str, tool_call_id: str | None, name: str | None = None
    ) -> "Message":
        return cls(role=Role.TOOL, content=text, name=name, tool_call_id=tool_call_id)

    @classmethod
    def from_dict(cls, data, where: str = "message", *, strict: bool = True):
        """Validate one message object and build a Message.

        Raises MalformedHistory when ``strict`` (stored data) and
        MalformedResponse otherwise (provider replies).
        """
        err = _error_class(strict)
        if not isinstance(data, dict):
            raise err(f"{where}: expected object, got {type(data).__name__}")
        _check_keys(data, _MESSAGE_KEYS, where, strict)

        try:
            role = Role(data.get("role"))
        except ValueError:
            raise err(f"{where}.role: unknown role {data.get('role')!r}") from None

        content = _parse_content(data.get("content"), where, err)

        name = data.get("name")
        if name is not None and not isinstance(name, str):
            raise err(f"{where}.name: expected string")

        tool_call_id = data.get("tool_call_id")
        if role is Role.TOOL:
            if not isinstance(tool_call_id, str) or not tool_call_id:
                raise err(f"{where}: tool message requires a tool_call_id")
            if content is None:
                raise err(f"{where}: tool message requires content")
        elif tool_call_id is not None:
            raise err(f"{where}: tool_call_id is only valid on tool messages")

        tool_calls = None
        raw_calls = data.get("tool_calls")
        if raw_calls is not None:
            if role is not Role.ASSISTANT:
                raise err(f"{where}: only assistant messages carry tool_calls")
            if not isinstance(raw_calls, list):
                raise err(f"{where}.tool_calls: expected list")
            tool_calls = [
                ToolCall.from_dict(tc, f"{where}.tool_calls[{i}]", strict=strict)
                for i, tc in enumerate(raw_calls)
            ] or None

        if role in (Role.SYSTEM, Role.USER) and content is None:
            raise err(f"{where}: {role.value} message requires content")

        return cls(
            role=role,
            content=content,
            name=name,
            tool_call_id=tool_call_id,
            tool_calls=tool_calls,
        )

    def to_dict(self) -> dict:
        data: dict = {"role": self.role.value, "content": copy.deepcopy(self.content)}
        if self.name is not None:
            data["name"] = self.name
        if self.tool_call_id is not None:
            data["tool_call_id"] = self.tool_call_id
        if self.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        return data

    @property
    def text(self) -> str:
        """Plain text of the message; image parts are skipped."""
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        return "".join(p["text"] for p in self.content if p.get("type") == "text")

    def human_readable(self) -> str:
        lines = [f"# {self.role.value}"]
        if isinstance(self.content, str):
            lines.append(self.content)
        elif self.content:
            for part in self.content:
                if part["type"] == "text":
                    lines.append(part["text"])
                else:
                    lines.append(f"Image ({len(part['image_url']['url'])} bytes)")
        for tc in self.tool_calls or []:
            lines.append(f"```{tc.function.name}\n{tc.function.arguments}\n```")
        return "\n".join(lines)


def estimate_tokens(messages: list[Message], tools: list | None = None) -> int:
    """Count tokens across all messages using tiktoken."""
    global _encoder
    if _encoder is None:
        _encoder = tiktoken.get_encoding("cl100k_base")
    total = 0
    for m in messages:
        content = m.text
        for tc in m.tool_calls or []:
            content += tc.function.name + tc.function.arguments
        total += len(_encoder.encode(content))
    if tools:
        total += len(_encoder.encode(json.dumps(tools)))
    # ~4 tokens of per-message overhead (role, separators)
    total += 4 * len(messages)
    return total
