"""Transport adapter: sends the payload through LiteLLM and parses the reply.

No retries: a request that failed on the client side may still have been
answered server-side, so failures are reported to the caller as-is.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from .errors import ConfigError, MalformedResponse, RemoteError, TransportError
from .messages import Message, Role
from .request import write_diagnostic

logger = logging.getLogger(__name__)

PROVIDERS = ("openai", "azure")
DEFAULT_TIMEOUT = 600.0


@dataclass(frozen=True)
class ApiConfig:
    """Resolved endpoint settings. Built once by the CLI layer, never read from the environment here."""

    provider: str
    base_url: str
    api_key: str
    model: str = ""
    api_version: str | None = None
    timeout: float = DEFAULT_TIMEOUT


def _route(api: ApiConfig, model: str) -> tuple[str, dict]:
    """Return the LiteLLM model string and connection kwargs for ``api``."""
    if api.provider == "openai":
        return f"openai/{model}", {"api_base": api.base_url, "api_key": api.api_key}
    if api.provider == "azure":
        if not api.api_version:
            raise ConfigError("azure provider requires an api_version")
        return f"azure/{model}", {
            "api_base": api.base_url,
            "api_key": api.api_key,
            "api_version": api.api_version,
        }
    raise ConfigError(f"unknown provider {api.provider!r}")


def _response_to_dict(response) -> dict:
    if isinstance(response, dict):
        return response
    dump = getattr(response, "model_dump", None)
    if callable(dump):
        return dump()
    raise MalformedResponse(f"unexpected response type {type(response).__name__}")


def parse_response(data) -> tuple[Message, str | None]:
    """Extract the assistant message and finish_reason from a completion JSON."""
    if not isinstance(data, dict):
        raise MalformedResponse("response is not a JSON object")
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        raise MalformedResponse("response contains no choices")
    choice = choices[0]
    if not isinstance(choice, dict) or not isinstance(choice.get("message"), dict):
        raise MalformedResponse("response choice 0 has no message")
    message = Message.from_dict(
        choice["message"], "response.choices[0].message", strict=False
    )
    if message.role is not Role.ASSISTANT:
        raise MalformedResponse(
            f"expected an assistant message, got role {message.role.value!r}"
        )
    return message, choice.get("finish_reason")


def send(
    payload: dict, api: ApiConfig, *, response_dump: Path | None = None
) -> tuple[Message, str | None]:
    """Call the endpoint once. Returns (assistant message, finish_reason)."""
    import litellm

    litellm.suppress_debug_info = True

    model_str, kwargs = _route(api, payload["model"])
    completion_kwargs = {k: v for k, v in payload.items() if k != "model"}
    logger.debug("calling %s with %d messages", model_str, len(payload["messages"]))

    try:
        response = litellm.completion(
            model=model_str,
            timeout=api.timeout,
            max_retries=0,
            **completion_kwargs,
            **kwargs,
        )
    except (litellm.Timeout, litellm.APIConnectionError) as e:
        raise TransportError(f"could not reach {api.base_url}: {e}") from e
    except Exception as e:
        status = getattr(e, "status_code", None)
        if isinstance(status, int):
            raise RemoteError(status, getattr(e, "message", None) or str(e)) from e
        raise TransportError(f"LLM call failed: {e}") from e

    data = _response_to_dict(response)
    if response_dump is not None:
        write_diagnostic(response_dump, data)
    return parse_response(data)
