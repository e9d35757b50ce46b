"""Chat history storage: one JSON document per chat id.

The file on disk is the source of truth. Saves go through a temporary sibling
file that is renamed into place, so the history file always holds either the
previous complete history or the new one.
"""

import json
import logging
import os
import stat
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConfigError, MalformedHistory, PersistFailure, StorageUnavailable
from .messages import Message

logger = logging.getLogger(__name__)

_HISTORY_KEYS = {"model", "messages"}


@dataclass
class ChatHistory:
    model: str
    messages: list[Message] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data, source: str = "history") -> "ChatHistory":
        if not isinstance(data, dict):
            raise MalformedHistory(
                f"{source}: expected a JSON object at top level, got {type(data).__name__}"
            )
        unknown = sorted(set(data) - _HISTORY_KEYS)
        if unknown:
            raise MalformedHistory(f"{source}: unknown keys {', '.join(unknown)}")
        model = data.get("model")
        if not isinstance(model, str):
            raise MalformedHistory(f"{source}: 'model' must be a string")
        raw = data.get("messages")
        if not isinstance(raw, list):
            raise MalformedHistory(f"{source}: 'messages' must be a list")
        messages = [
            Message.from_dict(m, f"{source}: messages[{i}]") for i, m in enumerate(raw)
        ]
        return cls(model=model, messages=messages)

    def to_dict(self) -> dict:
        return {"model": self.model, "messages": [m.to_dict() for m in self.messages]}


def history_path(chat_id: str, base_dir) -> Path:
    """Return ``base_dir/<chat_id>.json``, refusing ids that would leave base_dir."""
    if (
        not chat_id
        or chat_id in (".", "..")
        or any(sep in chat_id for sep in ("/", "\\", "\0"))
    ):
        raise ConfigError(f"invalid chat id {chat_id!r}")
    return Path(base_dir) / f"{chat_id}.json"


def check_storage(base_dir) -> None:
    """Fail fast if the chats directory cannot hold a saved history."""
    base = Path(base_dir)
    if not base.is_dir():
        raise StorageUnavailable(f"chats directory {base} does not exist")
    if not os.access(base, os.W_OK | os.X_OK):
        raise StorageUnavailable(f"chats directory {base} is not writable")


def load(path) -> ChatHistory:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise MalformedHistory(f"{path}: not valid UTF-8: {e}") from e
    except OSError as e:
        raise StorageUnavailable(f"{path}: cannot read history: {e}") from e
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedHistory(f"{path}: invalid JSON: {e}") from e
    return ChatHistory.from_dict(data, str(path))


def open_or_create(
    chat_id: str,
    base_dir,
    *,
    model: str = "",
    seed_messages: tuple[Message, ...] | list[Message] = (),
) -> ChatHistory:
    """Load the history for ``chat_id`` or start a new one.

    The storage check runs first, even for existing chats, so an unwritable
    directory is reported before any request is made. New histories get the
    configured model name and a copy of ``seed_messages`` (e.g. a system prompt).
    """
    check_storage(base_dir)
    path = history_path(chat_id, base_dir)
    if path.exists():
        history = load(path)
        logger.debug("loaded %d messages from %s", len(history.messages), path)
        return history
    logger.debug("starting new chat %s", path)
    return ChatHistory(
        model=model,
        messages=[Message.from_dict(m.to_dict()) for m in seed_messages],
    )


def append(history: ChatHistory, message: Message) -> None:
    history.messages.append(message)


def _file_mode(path: Path) -> int:
    """Mode of the existing history file, or the umask default for a new one."""
    try:
        return stat.S_IMODE(os.stat(path).st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


def _fsync_dir(directory: Path) -> None:
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError as e:
        logger.warning(f"could not open {directory} to sync it: {e}")
        return
    try:
        os.fsync(fd)
    except OSError as e:
        logger.warning(f"could not sync {directory}: {e}")
    finally:
        os.close(fd)


def save(history: ChatHistory, path) -> None:
    """Atomically write ``history`` to ``path``.

    The previous file mode is kept. Raises PersistFailure on any I/O error;
    the caller keeps the in-memory history so the turn can be saved again.
    """
    path = Path(path)
    serialized = json.dumps(history.to_dict(), indent=2, ensure_ascii=False) + "\n"
    tmp_name = None
    try:
        fd, tmp_name = tempfile.mkstemp(
            dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
        )
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(serialized)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, _file_mode(path))
        os.replace(tmp_name, path)
    except OSError as e:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            except OSError as cleanup_error:
                logger.warning(f"could not remove {tmp_name}: {cleanup_error}")
        raise PersistFailure(f"failed to save {path}: {e}") from e
    _fsync_dir(path.parent)
    logger.debug("saved %d messages to %s", len(history.messages), path)
