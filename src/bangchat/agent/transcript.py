"""
bangchat/agent/transcript.py - Conversation Transcript

Two views of the same conversation:

  - Transcript        in-memory ordered (role, message) entries
  - TranscriptWriter  append-only file of raw rendered-template blocks, one
                      newline-terminated record per ingest or generate

The file is plain UTF-8 with no framing. A crash mid-write can leave an
unterminated last record; read_transcript() returns it as-is.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, TextIO

from bangchat.brain.types import Role
from bangchat.observability.logger import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class TranscriptEntry:
    role: Role
    message: str


class Transcript:
    """Append-only in-memory conversation log."""

    def __init__(self) -> None:
        self._entries: list[TranscriptEntry] = []

    def append(self, role: Role, message: str) -> TranscriptEntry:
        entry = TranscriptEntry(role=role, message=message)
        self._entries.append(entry)
        return entry

    @property
    def entries(self) -> tuple[TranscriptEntry, ...]:
        return tuple(self._entries)

    def __iter__(self) -> Iterator[TranscriptEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


class TranscriptWriter:
    """
    Appends records to a transcript file, flushing after each one.

    Usage:
        with TranscriptWriter("chat.log") as writer:
            writer.record(prompt_text)
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file: Optional[TextIO] = self.path.open("a", encoding="utf-8")
        log.debug("transcript.opened", path=str(self.path))

    def record(self, text: str) -> None:
        if self._file is None:
            raise ValueError("transcript writer is closed")
        self._file.write(text + "\n")
        self._file.flush()

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> "TranscriptWriter":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def read_transcript(path: str | Path) -> list[str]:
    """
    Return the records of a transcript file, split on newlines.

    Undecodable bytes are replaced. An unterminated trailing record is kept.
    Records that themselves contain newlines come back as several lines,
    since the format is unframed.
    """
    data = Path(path).read_bytes().decode("utf-8", errors="replace")
    if not data:
        return []
    records = data.split("\n")
    if records[-1] == "":
        records.pop()
    return records
