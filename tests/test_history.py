"""Tests for on-disk chat history: load, create, append, atomic save."""

import json
import os
import stat

import pytest

from oaichat import history as history_mod
from oaichat.errors import (
    ConfigError,
    MalformedHistory,
    PersistFailure,
    StorageUnavailable,
)
from oaichat.history import (
    ChatHistory,
    append,
    check_storage,
    history_path,
    load,
    open_or_create,
    save,
)
from oaichat.messages import Message, Role

from conftest import tool_call_reply, write_history


# ---------------------------------------------------------------------------
# Paths and storage checks
# ---------------------------------------------------------------------------


class TestPaths:
    def test_history_path(self, tmp_path):
        assert history_path("0001", tmp_path) == tmp_path / "0001.json"

    @pytest.mark.parametrize("bad", ["", ".", "..", "a/b", "..\\x", "a\0b"])
    def test_rejects_escaping_ids(self, tmp_path, bad):
        with pytest.raises(ConfigError):
            history_path(bad, tmp_path)


class TestStorageCheck:
    def test_missing_dir(self, tmp_path):
        with pytest.raises(StorageUnavailable, match="does not exist"):
            check_storage(tmp_path / "nope")

    def test_file_instead_of_dir(self, tmp_path):
        f = tmp_path / "file"
        f.write_text("x")
        with pytest.raises(StorageUnavailable):
            check_storage(f)

    def test_unwritable_dir(self, chats_dir, monkeypatch):
        monkeypatch.setattr(history_mod.os, "access", lambda path, mode: False)
        with pytest.raises(StorageUnavailable, match="not writable"):
            check_storage(chats_dir)

    def test_open_checks_storage_for_existing_chat(self, chats_dir, monkeypatch):
        write_history(chats_dir / "c.json", "m", [Message.user("hi")])
        monkeypatch.setattr(history_mod.os, "access", lambda path, mode: False)
        with pytest.raises(StorageUnavailable):
            open_or_create("c", chats_dir)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


class TestOpenOrCreate:
    def test_new_chat_seeded_with_model(self, chats_dir):
        h = open_or_create("0001", chats_dir, model="gpt-x")
        assert h.model == "gpt-x"
        assert h.messages == []
        assert not (chats_dir / "0001.json").exists()

    def test_new_chat_copies_seed_messages(self, chats_dir):
        seed = (Message.system("be brief"),)
        h = open_or_create("0001", chats_dir, model="m", seed_messages=seed)
        assert h.messages == [Message.system("be brief")]
        assert h.messages[0] is not seed[0]

    def test_existing_chat_loaded(self, chats_dir):
        msgs = [Message.user("q"), Message(role=Role.ASSISTANT, content="a")]
        write_history(chats_dir / "1001.json", "stored-model", msgs)
        h = open_or_create("1001", chats_dir, model="ignored")
        assert h.model == "stored-model"
        assert h.messages == msgs

    def test_invalid_json(self, chats_dir):
        (chats_dir / "bad.json").write_text("{not json")
        with pytest.raises(MalformedHistory, match="invalid JSON"):
            open_or_create("bad", chats_dir)

    def test_wrong_shape(self, chats_dir):
        (chats_dir / "bad.json").write_text(json.dumps([1, 2, 3]))
        with pytest.raises(MalformedHistory, match="top level"):
            open_or_create("bad", chats_dir)

    def test_missing_messages(self, chats_dir):
        (chats_dir / "bad.json").write_text(json.dumps({"model": "m"}))
        with pytest.raises(MalformedHistory, match="messages"):
            open_or_create("bad", chats_dir)

    def test_unknown_top_level_key(self, chats_dir):
        (chats_dir / "bad.json").write_text(
            json.dumps({"model": "m", "messages": [], "temperature": 0.2})
        )
        with pytest.raises(MalformedHistory, match="unknown keys"):
            open_or_create("bad", chats_dir)

    def test_bad_message_reports_index(self, chats_dir):
        (chats_dir / "bad.json").write_text(
            json.dumps({"model": "m", "messages": [{"role": "user", "content": "x"}, {"role": "tool", "content": "y"}]})
        )
        with pytest.raises(MalformedHistory, match=r"messages\[1\]"):
            open_or_create("bad", chats_dir)


# ---------------------------------------------------------------------------
# Saving
# ---------------------------------------------------------------------------


class TestSave:
    def test_round_trip(self, chats_dir):
        h = ChatHistory(
            model="m",
            messages=[
                Message.system("sys"),
                Message.user("read a.txt"),
                tool_call_reply("call_1"),
                Message.tool("contents", "call_1", name="read_file"),
                Message(role=Role.ASSISTANT, content="done ✓"),
            ],
        )
        path = chats_dir / "rt.json"
        save(h, path)
        assert load(path) == h

    def test_load_save_preserves_content(self, chats_dir):
        path = chats_dir / "c.json"
        write_history(path, "m", [Message.user("ünïcödé"), tool_call_reply("X")])
        before = json.loads(path.read_text())
        save(load(path), path)
        assert json.loads(path.read_text()) == before

    def test_append_only_across_saves(self, chats_dir):
        path = chats_dir / "c.json"
        h = ChatHistory(model="m")
        snapshots = []
        for i in range(3):
            append(h, Message.user(f"q{i}"))
            append(h, Message(role=Role.ASSISTANT, content=f"a{i}"))
            save(h, path)
            snapshots.append(json.loads(path.read_text())["messages"])
        for prev, cur in zip(snapshots, snapshots[1:]):
            assert cur[: len(prev)] == prev
            assert len(cur) > len(prev)

    def test_no_temp_files_left(self, chats_dir):
        save(ChatHistory(model="m"), chats_dir / "c.json")
        assert [p.name for p in chats_dir.iterdir()] == ["c.json"]

    def test_io_error_raises_persist_failure(self, chats_dir, monkeypatch):
        path = chats_dir / "c.json"
        write_history(path, "m", [Message.user("old")])
        original = path.read_text()

        def fail_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(history_mod.os, "replace", fail_replace)
        h = ChatHistory(model="m", messages=[Message.user("old"), Message.user("new")])
        with pytest.raises(PersistFailure, match="disk full"):
            save(h, path)
        assert path.read_text() == original
        assert [p.name for p in chats_dir.iterdir()] == ["c.json"]
        assert len(h.messages) == 2

    def test_crash_before_rename_keeps_original(self, chats_dir, monkeypatch):
        path = chats_dir / "c.json"
        write_history(path, "m", [Message.user("old")])

        class Crash(BaseException):
            pass

        def crash(src, dst):
            raise Crash()

        monkeypatch.setattr(history_mod.os, "replace", crash)
        with pytest.raises(Crash):
            save(ChatHistory(model="m", messages=[Message.user("new")]), path)

        # The temporary file is left behind, the history file is untouched
        assert load(path).messages == [Message.user("old")]
        leftovers = [p for p in chats_dir.iterdir() if p.name != "c.json"]
        assert len(leftovers) == 1
        assert leftovers[0].name.startswith(".c.json.")

    def test_missing_directory_raises_persist_failure(self, tmp_path):
        with pytest.raises(PersistFailure):
            save(ChatHistory(model="m"), tmp_path / "gone" / "c.json")

    def test_existing_mode_preserved(self, chats_dir):
        path = chats_dir / "c.json"
        write_history(path, "m", [Message.user("old")])
        path.chmod(0o640)
        save(ChatHistory(model="m", messages=[Message.user("new")]), path)
        assert stat.S_IMODE(path.stat().st_mode) == 0o640

    def test_new_file_follows_umask(self, chats_dir):
        umask = os.umask(0o022)
        try:
            save(ChatHistory(model="m"), chats_dir / "c.json")
        finally:
            os.umask(umask)
        assert stat.S_IMODE((chats_dir / "c.json").stat().st_mode) == 0o644

    def test_directory_synced_after_rename(self, chats_dir, monkeypatch):
        synced = []
        real_fsync = os.fsync

        def recording_fsync(fd):
            synced.append(stat.S_ISDIR(os.fstat(fd).st_mode))
            real_fsync(fd)

        monkeypatch.setattr(history_mod.os, "fsync", recording_fsync)
        save(ChatHistory(model="m"), chats_dir / "c.json")
        assert synced == [False, True]
