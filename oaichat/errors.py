"""Error kinds raised by the chat context, request builder and transport."""


class ChatError(Exception):
    """Base class for reportable failures of a chat turn."""


class ConfigError(ChatError):
    """Raised for invalid configuration (missing model, bad template, no credentials)."""


class InputError(ChatError):
    """Raised when the new message cannot be read from its source."""


class StorageUnavailable(ChatError):
    """The chats directory is missing or not writable."""


class MalformedHistory(ChatError):
    """The on-disk history does not match the ChatHistory shape."""


class UnknownToolCallId(ChatError):
    """A tool response does not answer an outstanding tool call."""


class NothingToSend(ChatError):
    """No new input was given and the stored history does not end with a request."""


class RepeatedRole(ChatError):
    """The new message has the same role as the last stored message."""


class TransportError(ChatError):
    """Network or connection failure talking to the endpoint."""


class RemoteError(ChatError):
    """The endpoint answered with a non-success HTTP status."""

    def __init__(self, status: int, body: str):
        super().__init__(f"endpoint returned HTTP {status}: {body}")
        self.status = status
        self.body = body


class MalformedResponse(ChatError):
    """The endpoint's JSON is missing required fields."""


class PersistFailure(ChatError):
    """Saving the history failed after a successful exchange."""
