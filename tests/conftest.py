import json

import pytest

from oaichat import fmt
from oaichat.messages import FunctionCall, Message, Role, ToolCall
from oaichat.transport import ApiConfig


@pytest.fixture(autouse=True)
def _isolate(tmp_path, monkeypatch):
    """Keep tests away from the real user config and credentials."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    for var in (
        "AZURE_API_KEY",
        "AZURE_API_BASE",
        "AZURE_API_VERSION",
        "OAICOMPAT_API_KEY",
        "OAICOMPAT_API_BASE",
        "OAICOMPAT_MODEL_NAME",
    ):
        monkeypatch.delenv(var, raising=False)
    fmt.init(color=False, no_color=True)


@pytest.fixture
def chats_dir(tmp_path):
    d = tmp_path / "chats"
    d.mkdir()
    return d


@pytest.fixture
def api():
    return ApiConfig(
        provider="openai",
        base_url="http://llm.test/v1",
        api_key="sk-test",
        model="env-model",
    )


class SendStub:
    """Transport stand-in that records payloads and returns canned replies."""

    def __init__(self, *replies):
        self.replies = list(replies) or [Message(role=Role.ASSISTANT, content="ok")]
        self.calls: list[dict] = []

    def __call__(self, payload, api, *, response_dump=None):
        self.calls.append(payload)
        return self.replies.pop(0), "stop"


def tool_call_reply(*ids, name="read_file"):
    return Message(
        role=Role.ASSISTANT,
        content=None,
        tool_calls=[
            ToolCall(
                id=i,
                function=FunctionCall(name=name, arguments=json.dumps({"path": "a.txt"})),
            )
            for i in ids
        ],
    )


def write_history(path, model, messages):
    path.write_text(
        json.dumps({"model": model, "messages": [m.to_dict() for m in messages]}),
        encoding="utf-8",
    )
