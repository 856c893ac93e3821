"""
bangchat/tools/base.py - Tool Base Class and Command Table

Every bangchat tool subclasses BaseTool, sets `name` and `description`, and
marks its commands with @command. Commands are collected in definition order
when the tool is constructed and are immutable afterwards.

A command handler receives the full argument vector (argv[0] is the command
name, without namespace) and a ToolIO, and returns an integer exit status.

Example:
    class EchoTool(BaseTool):
        name = "echo"
        description = "Repeats its arguments."

        @command(description="Print the arguments separated by spaces.")
        def echo(self, argv: list[str], io: ToolIO) -> int:
            io.write(" ".join(argv[1:]) + "\\n")
            return 0
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, ClassVar, Optional, Sequence

from bangchat.exceptions import CommandNotFoundError, ToolError

NAMESPACE_SEPARATOR = "::"

CommandHandler = Callable[[list[str], "ToolIO"], int]

_COMMAND_ATTR = "__bangchat_command__"


@dataclass(frozen=True)
class Command:
    """One entry of a tool's command table."""
    name: str
    description: str
    handler: CommandHandler


class ToolIO:
    """
    Output channels for one command invocation.

    write() and error() are captured in call order into a single text, which
    the registry returns to the session as the tool's output. read() asks the
    language model to continue generating and returns what it produced.
    """

    def __init__(self, request_continuation: Optional[Callable[[], str]] = None) -> None:
        self._request_continuation = request_continuation
        self._chunks: list[str] = []

    def write(self, text: str) -> None:
        self._chunks.append(text)

    def error(self, text: str) -> None:
        self._chunks.append(text)

    def read(self) -> str:
        if self._request_continuation is None:
            raise ToolError("this tool session has no input source")
        return self._request_continuation()

    @property
    def output(self) -> str:
        return "".join(self._chunks)


def command(name: Optional[str] = None, description: str = "") -> Callable[[Callable], Callable]:
    """Mark a BaseTool method as a command. The method name is the default command name."""

    def decorator(fn: Callable) -> Callable:
        doc = (fn.__doc__ or "").strip().split("\n")[0]
        setattr(fn, _COMMAND_ATTR, (name or fn.__name__, description or doc))
        return fn

    return decorator


def _check_identifier(kind: str, value: str) -> None:
    if not value or NAMESPACE_SEPARATOR in value or any(c.isspace() for c in value):
        raise ValueError(
            f"{kind} name {value!r} is invalid: it must be non-empty and contain "
            f"neither whitespace nor '{NAMESPACE_SEPARATOR}'"
        )


class BaseTool:
    """
    Base class for tools.

    Subclasses declare `name` and `description` as class attributes and may
    override them per instance, so one class can be registered twice under
    different names.
    """

    name: ClassVar[str] = ""
    description: ClassVar[str] = ""

    def __init__(self, name: Optional[str] = None, description: Optional[str] = None) -> None:
        if name is not None:
            self.name = name  # type: ignore[misc]
        if description is not None:
            self.description = description  # type: ignore[misc]
        _check_identifier("tool", self.name)
        self._commands: tuple[Command, ...] = self._collect_commands()
        if not self._commands:
            raise ValueError(f"tool '{self.name}' defines no commands")

    def _collect_commands(self) -> tuple[Command, ...]:
        seen: dict[str, Command] = {}
        for cls in reversed(type(self).__mro__):
            defined_here: set[str] = set()
            for attr, value in vars(cls).items():
                marker = getattr(value, _COMMAND_ATTR, None)
                if marker is None:
                    continue
                cmd_name, cmd_description = marker
                _check_identifier("command", cmd_name)
                if cmd_name in defined_here:
                    raise ValueError(
                        f"tool '{self.name}' defines command '{cmd_name}' twice"
                    )
                defined_here.add(cmd_name)
                # an override in a subclass replaces the inherited entry in place
                seen[cmd_name] = Command(
                    name=cmd_name,
                    description=cmd_description,
                    handler=getattr(self, attr),
                )
        return tuple(seen.values())

    def commands(self) -> tuple[Command, ...]:
        return self._commands

    def get_command(self, name: str) -> Optional[Command]:
        for cmd in self._commands:
            if cmd.name == name:
                return cmd
        return None

    def invoke(self, argv: Sequence[str], io: ToolIO) -> int:
        """Run argv[0] with the full argument vector and return its exit status."""
        cmd = self.get_command(argv[0]) if argv else None
        if cmd is None:
            raise CommandNotFoundError(argv[0] if argv else "", namespace=self.name)
        return int(cmd.handler(list(argv), io))

    def __repr__(self) -> str:
        return f"<Tool:{self.name} commands={[c.name for c in self._commands]}>"
