"""Static request template loaded from ``<config_dir>/empty_chat.json``.

``template.json`` is accepted when ``empty_chat.json`` is absent.

The template holds the per-deployment request fields (model override, tool
definitions, sampling parameters) and optional seed messages for new chats.
It is read once per invocation and never modified afterwards.
"""

import copy
import json
import logging
from dataclasses import dataclass
from pathlib import Path

from .errors import ConfigError, MalformedHistory
from .messages import Message

logger = logging.getLogger(__name__)

TEMPLATE_FILE = "empty_chat.json"
TEMPLATE_FILES = (TEMPLATE_FILE, "template.json")

# Read and warned about, never sent
IGNORED_KEYS = ("stream",)

TEMPLATE_KEYS: dict[str, type | tuple[type, ...]] = {
    "model": str,
    "tools": list,
    "tool_choice": (str, dict),
    "max_tokens": int,
    "temperature": (int, float),
    "top_p": (int, float),
    "frequency_penalty": (int, float),
    "presence_penalty": (int, float),
    "stop": (str, list),
    "seed": int,
    "messages": list,
}

SAMPLING_KEYS = (
    "max_tokens",
    "temperature",
    "top_p",
    "frequency_penalty",
    "presence_penalty",
    "stop",
    "seed",
)


@dataclass(frozen=True)
class RequestTemplate:
    model: str = ""
    tools: list | None = None
    tool_choice: str | dict | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    stop: str | list | None = None
    seed: int | None = None
    messages: tuple[Message, ...] = ()

    def request_fields(self) -> dict:
        """Static payload fields, deep-copied so callers cannot mutate the template."""
        fields: dict = {}
        if self.tools:
            fields["tools"] = copy.deepcopy(self.tools)
            if self.tool_choice is not None:
                fields["tool_choice"] = copy.deepcopy(self.tool_choice)
        for key in SAMPLING_KEYS:
            value = getattr(self, key)
            if value is not None:
                fields[key] = copy.deepcopy(value)
        return fields


def _type_name(expected: type | tuple[type, ...]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def _validate_tools(tools: list, source: str) -> None:
    for i, tool in enumerate(tools):
        where = f"{source}: tools[{i}]"
        if not isinstance(tool, dict) or tool.get("type") != "function":
            raise ConfigError(f"{where}: expected an object with type 'function'")
        fn = tool.get("function")
        if not isinstance(fn, dict) or not isinstance(fn.get("name"), str):
            raise ConfigError(f"{where}: 'function' must be an object with a 'name'")


def parse_template(data, source: str = TEMPLATE_FILE) -> RequestTemplate:
    if not isinstance(data, dict):
        raise ConfigError(f"{source}: expected a JSON object at top level")

    known = {}
    for key, value in data.items():
        if key in IGNORED_KEYS:
            logger.warning(f"{source}: ignoring {key!r}, responses are never streamed")
            continue
        if key not in TEMPLATE_KEYS:
            logger.warning(f"{source}: unknown template key {key!r}")
            continue
        if value is None:
            continue
        expected = TEMPLATE_KEYS[key]
        # bool is a subclass of int; reject it for numeric fields
        if isinstance(value, bool) or not isinstance(value, expected):
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got {type(value).__name__}"
            )
        known[key] = value

    if "tools" in known:
        _validate_tools(known["tools"], source)

    if "messages" in known:
        try:
            known["messages"] = tuple(
                Message.from_dict(m, f"{source}: messages[{i}]")
                for i, m in enumerate(known["messages"])
            )
        except MalformedHistory as e:
            raise ConfigError(str(e)) from e

    return RequestTemplate(**known)


def load_template(config_dir) -> RequestTemplate:
    """Load the first template found in ``config_dir``.

    No template file gives an empty template.
    """
    for name in TEMPLATE_FILES:
        path = Path(config_dir) / name
        if path.is_file():
            break
    else:
        logger.debug("no template in %s, using defaults", config_dir)
        return RequestTemplate()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"{path}: cannot read file: {e}") from e
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ConfigError(f"{path}: invalid JSON: {e}") from e
    return parse_template(data, str(path))
