"""
tests/unit/test_transcript.py - Transcript Tests
"""

from __future__ import annotations

import pytest

from bangchat.agent.transcript import Transcript, TranscriptWriter, read_transcript
from bangchat.brain.types import Role


class TestTranscript:
    def test_append_order(self):
        t = Transcript()
        t.append(Role.USER, "hi")
        t.append(Role.ASSISTANT, "hello")
        assert [(e.role, e.message) for e in t] == [(Role.USER, "hi"), (Role.ASSISTANT, "hello")]
        assert len(t) == 2

    def test_entries_is_a_snapshot(self):
        t = Transcript()
        snapshot = t.entries
        t.append(Role.SYSTEM, "x")
        assert snapshot == ()


class TestTranscriptWriter:
    def test_records_are_newline_terminated(self, tmp_path):
        path = tmp_path / "logs" / "chat.log"
        with TranscriptWriter(path) as writer:
            writer.record("User: hi")
            writer.record("Assistant: hello")
        assert path.read_text() == "User: hi\nAssistant: hello\n"

    def test_appends_to_existing_file(self, tmp_path):
        path = tmp_path / "chat.log"
        path.write_text("old\n")
        with TranscriptWriter(path) as writer:
            writer.record("new")
        assert read_transcript(path) == ["old", "new"]

    def test_record_after_close(self, tmp_path):
        writer = TranscriptWriter(tmp_path / "chat.log")
        writer.close()
        writer.close()
        with pytest.raises(ValueError):
            writer.record("late")


class TestReadTranscript:
    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.log"
        path.write_text("")
        assert read_transcript(path) == []

    def test_unterminated_trailing_record(self, tmp_path):
        path = tmp_path / "crash.log"
        path.write_bytes(b"first\nsecond\npart")
        assert read_transcript(path) == ["first", "second", "part"]

    def test_invalid_utf8_is_replaced(self, tmp_path):
        path = tmp_path / "bad.log"
        path.write_bytes(b"ok\n\xff\xfe\n")
        records = read_transcript(path)
        assert records[0] == "ok"
        assert "�" in records[1]
