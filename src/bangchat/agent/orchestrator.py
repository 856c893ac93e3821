"""
bangchat/agent/orchestrator.py - Session Orchestrator

Drives one conversation between the end user, a LanguageModel and the
ToolRegistry. For each end-user input the orchestrator:

    1. Builds the prompt   (System seed once, then the User message, then an
                            open Assistant turn) with apply_template()
    2. Ingests it          (failure is fatal)
    3. Generates           streaming every fragment through the StreamParser,
                           which dispatches directives inline
    4. Loops tool results  back as a single System message and repeats from
                           step 1 until a turn dispatches nothing

An input equal to the exit token ends the session and saves the backend
state once when a state path is configured. Backend failures end the
session too: state is saved on a best-effort basis and the error re-raised.

Usage:
    orc = SessionOrchestrator(lm, registry, system_prompt="...", state_path="chat.state")
    orc.start()
    result = orc.handle_input("what is 1 + 2?")
    result.reply
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from bangchat.agent.context_builder import build_system_prompt
from bangchat.agent.stream_parser import (
    DIRECTIVE_MARKER,
    ParseState,
    StreamParser,
    TextSink,
    TurnOutput,
)
from bangchat.agent.transcript import Transcript, TranscriptWriter
from bangchat.brain.base import LanguageModel
from bangchat.brain.types import Message, Role
from bangchat.exceptions import LLMError, SessionError
from bangchat.observability.logger import bind_session, clear_session, get_logger
from bangchat.tools.registry import ToolRegistry

log = get_logger(__name__)

EXIT_TOKEN = "!exit"
THINK_TOKEN = "!think"


@dataclass(frozen=True)
class ExchangeResult:
    """Everything that happened for one end-user input."""
    turns: tuple[TurnOutput, ...] = ()
    exited: bool = False
    truncated: bool = False

    @property
    def reply(self) -> str:
        """Visible text of the last turn."""
        return self.turns[-1].visible if self.turns else ""

    @property
    def tool_messages(self) -> list[str]:
        return [t.system_message for t in self.turns if t.results]


class SessionOrchestrator:
    """
    Turn loop for a single conversation. Not thread-safe: one exchange at a
    time, on the caller's thread.

    Args:
        model:             Language model backend.
        registry:          Tool registry; its request_continuation is bound
                           to this orchestrator.
        system_prompt:     Seed text. {et_system_prompt} is replaced with the
                           tool catalogue. Skipped when a saved state loads.
        state_path:        Backend state file, loaded by start() and saved
                           on exit.
        transcript_writer: Optional raw transcript file.
        exit_token:        Input that ends the session.
        think_token:       Input prefix that enables think mode.
        marker:            Directive marker character.
        max_tool_rounds:   Cap on tool-driven turns per input (None = no cap).
        visible_sink:      Receives model text meant for the user.
        thought_sink:      Receives think-mode text.
        tool_output_sink:  Receives each System message built from tool results.
    """

    def __init__(
        self,
        model: LanguageModel,
        registry: ToolRegistry,
        system_prompt: str = "",
        state_path: str | Path | None = None,
        transcript_writer: Optional[TranscriptWriter] = None,
        exit_token: str = EXIT_TOKEN,
        think_token: str = THINK_TOKEN,
        marker: str = DIRECTIVE_MARKER,
        max_tool_rounds: Optional[int] = None,
        visible_sink: Optional[TextSink] = None,
        thought_sink: Optional[TextSink] = None,
        tool_output_sink: Optional[TextSink] = None,
    ) -> None:
        self._model = model
        self._registry = registry
        self._registry.request_continuation = self.continue_generation
        self._system_prompt = system_prompt
        self._state_path = Path(state_path) if state_path else None
        self._writer = transcript_writer
        self._exit_token = exit_token.strip()
        self._think_token = think_token.strip()
        self._marker = marker
        self._max_tool_rounds = max_tool_rounds
        self._tool_output_sink = tool_output_sink
        self._parser = StreamParser(
            registry,
            visible_sink=visible_sink,
            thought_sink=thought_sink,
            marker=marker,
        )

        self.session_id = uuid.uuid4().hex[:12]
        self.transcript = Transcript()
        self._pending: list[Message] = []
        self._turn: Optional[tuple[ParseState, list[str]]] = None
        self._turn_recorded = 0
        self._started = False
        self._closed = False
        self.state_loaded = False

    # ── Lifecycle ────────────────────────────────────────────────────────────

    def start(self) -> bool:
        """
        Load prior state when configured and prepare the System seed.
        Returns True if a saved state was loaded.
        """
        if self._started:
            return self.state_loaded
        self._started = True
        bind_session(self.session_id)

        if self._state_path is not None and self._state_path.exists():
            try:
                self._model.load_state(self._state_path)
                self.state_loaded = True
            except LLMError as e:
                log.warning(
                    "orchestrator.state_load_failed",
                    path=str(self._state_path),
                    error=str(e),
                )

        if not self.state_loaded:
            prompt = build_system_prompt(self._system_prompt, self._registry, self._marker)
            if prompt.strip():
                self._pending.append(Message.system(prompt))
            else:
                log.warning("orchestrator.no_system_prompt")

        log.info(
            "orchestrator.started",
            backend=self._model.name,
            tools=[t.name for t in self._registry.tools()],
            state_loaded=self.state_loaded,
            seeded=bool(self._pending),
        )
        return self.state_loaded

    def shutdown(self) -> None:
        """End the session, saving state once if a state path is configured."""
        if self._closed:
            return
        self._closed = True
        try:
            if self._state_path is not None:
                self._model.save_state(self._state_path)
        finally:
            log.info("orchestrator.shutdown", turns=len(self.transcript))
            clear_session()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def exit_token(self) -> str:
        return self._exit_token

    # ── Exchange ─────────────────────────────────────────────────────────────

    def handle_input(self, text: str) -> ExchangeResult:
        """
        Process one end-user input through as many turns as tool use needs.

        Raises:
            SessionError: the session has already ended.
            LLMError:     ingestion or generation failed. The session is
                          over once this propagates.
        """
        if self._closed:
            raise SessionError("session has ended")
        if not self._started:
            self.start()

        stripped = text.strip()
        if stripped == self._exit_token:
            log.info("orchestrator.exit_requested")
            self.shutdown()
            return ExchangeResult(exited=True)

        think = False
        if self._think_token and stripped.split(maxsplit=1)[:1] == [self._think_token]:
            stripped = stripped[len(self._think_token):].strip()
            think = self._model.supports_think
            if not think:
                log.warning("orchestrator.think_unsupported", backend=self._model.name)

        messages = [*self._pending, Message.user(stripped)]
        self._pending = []
        return self._run_exchange(messages, think)

    def _run_exchange(self, messages: list[Message], think: bool) -> ExchangeResult:
        turns: list[TurnOutput] = []
        rounds = 0
        while True:
            output = self._run_turn(messages, think)
            turns.append(output)
            if not output.results:
                return ExchangeResult(turns=tuple(turns))

            system_message = output.system_message
            if self._tool_output_sink is not None:
                self._tool_output_sink(system_message)

            rounds += 1
            if self._max_tool_rounds is not None and rounds >= self._max_tool_rounds:
                log.warning("orchestrator.tool_rounds_exhausted", rounds=rounds)
                # results are delivered with the next end-user input
                self._pending.append(Message.system(system_message))
                return ExchangeResult(turns=tuple(turns), truncated=True)

            messages = [Message.system(system_message)]

    def _run_turn(self, messages: list[Message], think: bool) -> TurnOutput:
        prompt = self._model.apply_template([*messages, Message.assistant()], think=think)
        log.debug("orchestrator.turn_start", messages=len(messages), think=think)

        try:
            self._model.ingest(prompt)
        except LLMError as e:
            self._fail("ingest", e)
            raise
        for msg in messages:
            self.transcript.append(msg.role, msg.content or "")
        if self._writer is not None:
            self._writer.record(prompt)

        state = self._parser.new_turn(think=think)
        reply: list[str] = []

        def _sink(fragment: str) -> None:
            reply.append(fragment)
            self._parser.feed(state, fragment)

        self._turn = (state, reply)
        self._turn_recorded = 0
        try:
            generated = self._model.generate_streaming(_sink)
        except LLMError as e:
            self._fail("generate", e)
            raise
        finally:
            self._turn = None
        output = self._parser.finish(state)

        # continue_generation() may already have recorded a leading part
        remainder = generated[self._turn_recorded:]
        if remainder or not self._turn_recorded:
            self._record_assistant(remainder)

        log.debug(
            "orchestrator.turn_complete",
            chars=len(generated),
            directives=len(output.results),
            no_content=output.no_content,
        )
        return output

    def continue_generation(self) -> str:
        """
        Let a running tool read more text from the model.

        The reply so far and the continuation are recorded as separate
        Assistant entries, in the order the backend context holds them.
        """
        log.debug("orchestrator.continuation")
        if self._turn is None:
            text = self._model.generate_streaming(lambda _fragment: None)
            self._record_assistant(text)
            return text

        state, reply = self._turn
        so_far = "".join(reply)
        if len(so_far) > self._turn_recorded:
            self._record_assistant(so_far[self._turn_recorded:])
            self._turn_recorded = len(so_far)
        # fed while the tool runs, so the parser keeps it out of the visible text
        text = self._model.generate_streaming(lambda fragment: self._parser.feed(state, fragment))
        self._record_assistant(text)
        return text

    def _record_assistant(self, text: str) -> None:
        self.transcript.append(Role.ASSISTANT, text)
        if self._writer is not None:
            self._writer.record(text)

    def _fail(self, stage: str, error: LLMError) -> None:
        log.error("orchestrator.fatal", stage=stage, error=str(error), error_type=type(error).__name__)
        self._closed = True
        if self._state_path is not None:
            try:
                self._model.save_state(self._state_path)
            except LLMError as save_error:
                log.warning("orchestrator.state_save_failed", error=str(save_error))
        clear_session()

    # ── Interactive loop ─────────────────────────────────────────────────────

    def run(self, read_input: Callable[[], Optional[str]]) -> int:
        """
        Read inputs until the exit token (or end of input, None) and return
        the process exit code. Backend errors propagate.
        """
        self.start()
        while True:
            text = read_input()
            if text is None:
                text = self._exit_token
            if self.handle_input(text).exited:
                return 0

    @classmethod
    def from_settings(
        cls,
        settings,
        model: LanguageModel,
        registry: ToolRegistry,
        transcript_writer: Optional[TranscriptWriter] = None,
        **sinks: Optional[TextSink],
    ) -> "SessionOrchestrator":
        s = settings.session
        return cls(
            model,
            registry,
            system_prompt=settings.resolve_system_prompt(),
            state_path=s.state_path,
            transcript_writer=transcript_writer,
            exit_token=s.exit_token,
            think_token=s.think_token,
            marker=s.directive_marker,
            max_tool_rounds=s.max_tool_rounds,
            **sinks,
        )
