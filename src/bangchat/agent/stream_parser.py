"""
bangchat/agent/stream_parser.py - Streaming Directive Parser

Consumes one generation turn as a sequence of text fragments of any size and
decides, line by line, whether the model is talking to the user or calling a
tool. A line whose first character is the directive marker ("!") is buffered
until its line terminator arrives, tokenized with shell quoting rules and
dispatched through the ToolRegistry. Every other line is passed through to
the visible sink as it streams.

With think mode on, a filter runs first: everything up to the first complete
"</think>" goes to the thought sink, then the delimiter and the whitespace
after it are dropped. A trailing piece that could still become the
delimiter is held back and never reaches either sink.

While a directive's tool runs it may read more model output. Fragments fed
during that time are kept in the raw turn text only: they are the tool's
input, so they are neither shown nor parsed for directives.

All per-turn state lives in a ParseState value threaded through feed():

    parser = StreamParser(registry, visible_sink=print_fragment)
    state = parser.new_turn(think=False)
    for fragment in fragments:
        state = parser.feed(state, fragment)
    output = parser.finish(state)
    output.system_message   # tool results to feed back, "" if none
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from bangchat.exceptions import (
    AmbiguousCommandError,
    CommandNotFoundError,
    DirectiveParseError,
    ToolNotFoundError,
)
from bangchat.observability.logger import get_logger
from bangchat.tools.registry import ToolRegistry

log = get_logger(__name__)

DIRECTIVE_MARKER = "!"
THINK_CLOSE = "</think>"

TextSink = Callable[[str], None]


class ParseMode(str, Enum):
    AWAITING_FIRST = "awaiting_first"
    PASS_THROUGH = "pass_through"
    BUFFERING_DIRECTIVE = "buffering_directive"
    DONE = "done"


@dataclass
class ThinkState:
    closed: bool = False
    held: str = ""
    thought: list[str] = field(default_factory=list)
    strip_leading: bool = False


@dataclass
class ParseState:
    mode: ParseMode = ParseMode.AWAITING_FIRST
    buffer: str = ""
    started: bool = False
    tool_running: bool = False
    think: Optional[ThinkState] = None
    raw: list[str] = field(default_factory=list)
    visible: list[str] = field(default_factory=list)
    results: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ThinkSplit:
    """Thought and final answer of a think-mode turn. answer is None if the
    delimiter never appeared."""
    thought: str
    answer: Optional[str]


@dataclass(frozen=True)
class TurnOutput:
    raw: str
    visible: str
    results: tuple[str, ...]
    think: Optional[ThinkSplit] = None
    no_content: bool = False

    @property
    def system_message(self) -> str:
        return "".join(self.results)


def parse_directive(text: str) -> list[str]:
    """Tokenize a directive line with shell quoting rules. Raises DirectiveParseError."""
    try:
        argv = shlex.split(text)
    except ValueError as e:
        raise DirectiveParseError(text, str(e)) from e
    if not argv:
        raise DirectiveParseError(text, "Text was empty (or contained only whitespace)")
    return argv


def _held_suffix(text: str, delimiter: str) -> int:
    """Length of the longest suffix of text that is a proper prefix of delimiter."""
    for size in range(min(len(text), len(delimiter) - 1), 0, -1):
        if delimiter.startswith(text[-size:]):
            return size
    return 0


class StreamParser:
    """
    Per-turn state machine over generated fragments.

    Args:
        registry:      Where complete directives are dispatched.
        visible_sink:  Receives pass-through text as it streams.
        thought_sink:  Receives think-mode text; called once more with the
                       text just before the delimiter when it closes, even if
                       that text is empty.
        marker:        Directive marker character.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        visible_sink: Optional[TextSink] = None,
        thought_sink: Optional[TextSink] = None,
        marker: str = DIRECTIVE_MARKER,
    ) -> None:
        self._registry = registry
        self._visible_sink = visible_sink
        self._thought_sink = thought_sink
        self._marker = marker

    def new_turn(self, think: bool = False) -> ParseState:
        return ParseState(think=ThinkState() if think else None)

    def feed(self, state: ParseState, fragment: str) -> ParseState:
        state.raw.append(fragment)
        if state.tool_running:
            # text a running tool reads as its input is neither shown nor routed
            return state
        if state.mode is ParseMode.DONE or not fragment:
            return state
        text = self._filter_think(state, fragment) if state.think is not None else fragment
        if text:
            self._route(state, text)
        return state

    def finish(self, state: ParseState) -> TurnOutput:
        think: Optional[ThinkSplit] = None
        if state.think is not None:
            if state.think.closed:
                think = ThinkSplit(
                    thought="".join(state.think.thought).strip(),
                    answer="".join(state.visible),
                )
            else:
                think = ThinkSplit(
                    thought=("".join(state.think.thought) + state.think.held).strip(),
                    answer=None,
                )
                log.info("stream.think_unclosed", chars=len(think.thought))

        if state.mode is ParseMode.BUFFERING_DIRECTIVE and state.buffer:
            log.warning("stream.directive_unterminated", text=state.buffer)

        state.mode = ParseMode.DONE
        return TurnOutput(
            raw="".join(state.raw),
            visible="".join(state.visible),
            results=tuple(state.results),
            think=think,
            no_content=not state.started,
        )

    # ── Think filter ─────────────────────────────────────────────────────────

    def _filter_think(self, state: ParseState, fragment: str) -> str:
        think = state.think
        assert think is not None

        if think.closed:
            if think.strip_leading:
                fragment = fragment.lstrip()
                if fragment:
                    think.strip_leading = False
            return fragment

        text = think.held + fragment
        idx = text.find(THINK_CLOSE)
        if idx == -1:
            keep = _held_suffix(text, THINK_CLOSE)
            emit = text[:len(text) - keep]
            think.held = text[len(text) - keep:]
            if emit:
                think.thought.append(emit)
                self._emit_thought(emit)
            return ""

        before = text[:idx]
        think.held = ""
        think.closed = True
        think.thought.append(before)
        self._emit_thought(before)
        log.debug("stream.think_closed", thought_chars=sum(len(t) for t in think.thought))

        after = text[idx + len(THINK_CLOSE):].lstrip()
        think.strip_leading = not after
        return after

    def _emit_thought(self, text: str) -> None:
        if self._thought_sink is not None:
            self._thought_sink(text)

    # ── Line routing ─────────────────────────────────────────────────────────

    def _route(self, state: ParseState, text: str) -> None:
        while text:
            if state.mode is ParseMode.DONE:
                return

            if state.mode is ParseMode.AWAITING_FIRST:
                if not state.started and text.startswith(("\n", "\r\n")):
                    # a reply opening with an empty line carries no content
                    log.debug("stream.empty_first_line")
                    state.mode = ParseMode.DONE
                    return
                state.started = True
                if text.startswith(self._marker):
                    state.mode = ParseMode.BUFFERING_DIRECTIVE
                    text = text[len(self._marker):]
                    continue
                state.mode = ParseMode.PASS_THROUGH

            line, sep, rest = text.partition("\n")

            if state.mode is ParseMode.PASS_THROUGH:
                self._emit_visible(state, line + sep)
                if sep:
                    state.mode = ParseMode.AWAITING_FIRST
                text = rest
                continue

            state.buffer += line
            if not sep:
                return
            command_text = state.buffer.rstrip("\r")
            state.buffer = ""
            state.mode = ParseMode.AWAITING_FIRST
            self._dispatch(state, command_text)
            text = rest

    def _emit_visible(self, state: ParseState, text: str) -> None:
        if not text:
            return
        state.visible.append(text)
        if self._visible_sink is not None:
            self._visible_sink(text)

    # ── Dispatch ─────────────────────────────────────────────────────────────

    def _dispatch(self, state: ParseState, command_text: str) -> None:
        log.info("stream.directive", command=command_text)
        state.tool_running = True
        try:
            state.results.append(self._execute(command_text))
        finally:
            state.tool_running = False

    def _execute(self, command_text: str) -> str:
        try:
            argv = parse_directive(command_text)
            return self._registry.dispatch(argv, command_text=command_text).render()
        except DirectiveParseError as e:
            log.warning("stream.directive_unparsable", command=command_text, reason=e.reason)
            return f'Failed to parse command "{command_text}": {e.reason}\n'
        except ToolNotFoundError as e:
            log.warning("stream.tool_not_found", command=command_text, tool=e.name)
            return (
                f'Failed to parse command: "{command_text}": '
                f'Module name "{e.name}" is not found.\n'
            )
        except CommandNotFoundError:
            log.warning("stream.command_not_found", command=command_text)
            return f'Failed to execute command "{command_text}". Command not found.\n'
        except AmbiguousCommandError as e:
            log.warning("stream.command_ambiguous", command=e.command, owners=list(e.owners))
            return (
                f'Command "{e.command}" is provided by some tools: {", ".join(e.owners)}\n'
                f"To call this command, you need to specify tool name, "
                f'like "[namespace]::{e.command}".\n'
            )
