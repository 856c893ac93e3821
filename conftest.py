"""
Test conftest: isolate environment variables and .env loading so Settings()
behaves the same on every machine, and provide a scripted language model.
"""
from __future__ import annotations

from pathlib import Path
from typing import Sequence

import pytest

from bangchat.brain.base import LanguageModel
from bangchat.brain.types import Message
from bangchat.exceptions import GenerationError, IngestError, StateError

_ENV_VARS = [
    "OPENAI_API_KEY",
    "OLLAMA_BASE_URL",
    "BANGCHAT_CONFIG",
]


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Remove secrets and BANGCHAT_* overrides for every test and disable
    .env loading so a developer's local .env never leaks into a run."""
    import os

    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    for var in list(os.environ):
        if var.upper().startswith("BANGCHAT_"):
            monkeypatch.delenv(var, raising=False)

    import bangchat.config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_prefix="BANGCHAT_",
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)


class FakeLanguageModel(LanguageModel):
    """
    Scripted backend. Each generate_streaming() call pops the next reply,
    a list of fragments, and feeds them to the sink one by one.
    """

    name = "fake"

    def __init__(self, replies: Sequence[Sequence[str]] = (), supports_think: bool = True):
        self.replies = [list(r) for r in replies]
        self.supports_think = supports_think
        self.ingested: list[str] = []
        self.templates: list[tuple[list[Message], bool]] = []
        self.generate_calls = 0
        self.saved: list[Path] = []
        self.loaded: list[Path] = []
        self.fail_ingest = False
        self.fail_generate = False
        self.fail_save = False
        self.fail_load = False

    def apply_template(self, messages: Sequence[Message], think: bool = False) -> str:
        self.templates.append((list(messages), think))
        blocks = [
            f"{m.role.value}:" if m.is_open else f"{m.role.value}: {m.content}"
            for m in messages
        ]
        return "\n\n".join(blocks) + (" <think>" if think else "")

    def ingest(self, text: str) -> None:
        if self.fail_ingest:
            raise IngestError("context full", provider=self.name)
        self.ingested.append(text)

    def generate_streaming(self, sink) -> str:
        self.generate_calls += 1
        if self.fail_generate:
            raise GenerationError("backend crashed", provider=self.name)
        fragments = self.replies.pop(0) if self.replies else []
        for fragment in fragments:
            sink(fragment)
        return "".join(fragments)

    def save_state(self, path) -> None:
        self.saved.append(Path(path))
        if self.fail_save:
            raise StateError("disk full", provider=self.name)

    def load_state(self, path) -> None:
        self.loaded.append(Path(path))
        if self.fail_load:
            raise StateError("corrupt state", provider=self.name)


@pytest.fixture
def make_lm():
    def _make(replies: Sequence[Sequence[str]] = (), supports_think: bool = True) -> FakeLanguageModel:
        return FakeLanguageModel(replies, supports_think=supports_think)
    return _make


@pytest.fixture
def calc_tool():
    from bangchat.tools.calc import CalcTool
    return CalcTool()


@pytest.fixture
def registry(calc_tool):
    from bangchat.tools.registry import ToolRegistry
    reg = ToolRegistry()
    reg.register(calc_tool)
    return reg
