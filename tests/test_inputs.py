"""Tests for message input sources: literal, @file, stdin."""

import io
from pathlib import Path

import pytest

from oaichat.errors import InputError
from oaichat.inputs import FilePath, Literal, Stdin, parse_input, read_stdin, resolve


class TestParseInput:
    @pytest.mark.parametrize("arg", ["-", "@-"])
    def test_stdin(self, arg):
        assert parse_input(arg) == Stdin()

    def test_file(self):
        assert parse_input("@notes/q.md") == FilePath(Path("notes/q.md"))

    def test_literal(self):
        assert parse_input("hello there") == Literal("hello there")

    def test_lone_at_is_literal(self):
        assert parse_input("@") == Literal("@")

    def test_email_like_text_is_literal(self):
        assert parse_input("mail me at a@b.c") == Literal("mail me at a@b.c")


class TestResolve:
    def test_literal(self):
        assert resolve(Literal("hi")) == "hi"

    def test_file(self, tmp_path):
        f = tmp_path / "q.md"
        f.write_text("from a file\n", encoding="utf-8")
        assert resolve(FilePath(f)) == "from a file\n"

    def test_missing_file(self, tmp_path):
        with pytest.raises(InputError, match="cannot read"):
            resolve(FilePath(tmp_path / "nope.md"))

    def test_stdin(self):
        assert resolve(Stdin(), stdin=io.BytesIO("piped ✓".encode())) == "piped ✓"


class TestStdinLimit:
    def test_at_limit(self):
        assert read_stdin(io.BytesIO(b"x" * 16), limit=16) == "x" * 16

    def test_over_limit(self):
        with pytest.raises(InputError, match="too large"):
            read_stdin(io.BytesIO(b"x" * 17), limit=16)

    def test_invalid_utf8(self):
        with pytest.raises(InputError, match="UTF-8"):
            read_stdin(io.BytesIO(b"\xff\xfe"))
