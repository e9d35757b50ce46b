"""Where the new message comes from: literal text, ``@path``, or stdin (``-`` / ``@-``)."""

import sys
from dataclasses import dataclass
from pathlib import Path

from .errors import InputError

MAX_STDIN_BYTES = 32_768


@dataclass(frozen=True)
class Literal:
    text: str


@dataclass(frozen=True)
class FilePath:
    path: Path


@dataclass(frozen=True)
class Stdin:
    pass


InputSource = Literal | FilePath | Stdin


def parse_input(arg: str) -> InputSource:
    if arg in ("-", "@-"):
        return Stdin()
    if arg.startswith("@") and len(arg) > 1:
        return FilePath(Path(arg[1:]))
    return Literal(arg)


def read_stdin(stream=None, limit: int = MAX_STDIN_BYTES) -> str:
    """Read at most ``limit`` bytes of UTF-8 from stdin; more is an error."""
    stream = stream if stream is not None else sys.stdin.buffer
    data = stream.read(limit + 1)
    if len(data) > limit:
        raise InputError(f"stdin input too large (limit {limit} bytes)")
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise InputError(f"stdin is not valid UTF-8: {e}") from e


def resolve(source: InputSource, stdin=None) -> str:
    """Turn an input source into the message text."""
    if isinstance(source, Literal):
        return source.text
    if isinstance(source, FilePath):
        try:
            return source.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise InputError(f"cannot read message file {source.path}: {e}") from e
    return read_stdin(stdin)
