"""
bangchat/tools/registry.py - Tool Registry and Dispatch

Owns the registered tools and a derived index command name -> owning tool
names. The index is updated in register() and unregister() and is always
exactly consistent with the tool set.

Dispatch rules for argv[0]:
  - "ns::cmd"  resolve ns as a tool name, then cmd among that tool's commands
  - "cmd"      resolve cmd across the index; zero owners is not found, two or
               more owners is ambiguous and nothing is invoked

Routing failures raise DispatchError subclasses. A tool that raises while
running does not: the failure is captured in the DispatchResult with
status -1, so one broken tool never ends the session.

Usage:
    registry = ToolRegistry(request_continuation=orchestrator.continue_generation)
    registry.register(CalcTool())
    result = registry.dispatch(["add", "1", "2"], command_text="add 1 2")
    result.render()   # '3\\nCommand "add 1 2" is returned with code 0\\n'
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from bangchat.exceptions import (
    AmbiguousCommandError,
    CommandNotFoundError,
    LLMError,
    ToolNameConflictError,
    ToolNotFoundError,
)
from bangchat.observability.logger import get_logger
from bangchat.tools.base import NAMESPACE_SEPARATOR, BaseTool, Command, ToolIO

log = get_logger(__name__)

FAILED_STATUS = -1


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of one invoked command."""
    command_text: str
    tool: str
    command: str
    status: int
    output: str

    def render(self) -> str:
        """Tool output followed by the execution-status line."""
        return (
            f"{self.output}\n"
            f'Command "{self.command_text}" is returned with code {self.status}\n'
        )


def split_namespace(token: str) -> tuple[Optional[str], str]:
    """'ns::cmd' -> ('ns', 'cmd'); 'cmd' -> (None, 'cmd')."""
    namespace, sep, name = token.partition(NAMESPACE_SEPARATOR)
    if not sep:
        return None, token
    return namespace, name


class ToolRegistry:
    """
    Registry that maps tool names to tools and command names to owners.

    Not designed for concurrent writes: register/unregister happen between
    turns, never while a dispatch is in flight.
    """

    def __init__(self, request_continuation: Optional[Callable[[], str]] = None) -> None:
        self._tools: dict[str, BaseTool] = {}
        self._index: dict[str, list[str]] = {}
        self.request_continuation = request_continuation

    # ── Registration ─────────────────────────────────────────────────────────

    def register(self, tool: BaseTool) -> None:
        """
        Register a tool and index its commands.

        Raises:
            ToolNameConflictError: a tool with the same name is registered.
                                   The existing registration is kept.
        """
        if tool.name in self._tools:
            raise ToolNameConflictError(tool.name)
        self._tools[tool.name] = tool
        for cmd in tool.commands():
            owners = self._index.setdefault(cmd.name, [])
            owners.append(tool.name)
            if len(owners) > 1:
                log.info("tool_registry.command_shared", command=cmd.name, owners=list(owners))
        log.debug(
            "tool_registry.registered",
            tool=tool.name,
            commands=[c.name for c in tool.commands()],
        )

    def unregister(self, name: str) -> BaseTool:
        """
        Remove a tool and its ownership of every command. The tool object is
        returned untouched.

        Raises:
            ToolNotFoundError: no tool is registered under name.
        """
        tool = self._tools.pop(name, None)
        if tool is None:
            raise ToolNotFoundError(name)
        for cmd in tool.commands():
            owners = self._index.get(cmd.name)
            if owners is None:
                continue
            if name in owners:
                owners.remove(name)
            if not owners:
                del self._index[cmd.name]
        log.debug("tool_registry.unregistered", tool=name)
        return tool

    # ── Lookup ───────────────────────────────────────────────────────────────

    def lookup(self, name: str) -> BaseTool:
        """Return the tool registered under name. Raises ToolNotFoundError."""
        try:
            return self._tools[name]
        except KeyError:
            raise ToolNotFoundError(name) from None

    def owners(self, command: str) -> tuple[str, ...]:
        """Names of the tools providing command, in registration order."""
        return tuple(self._index.get(command, ()))

    def tools(self) -> list[BaseTool]:
        """All registered tools, in registration order."""
        return list(self._tools.values())

    def commands(self) -> dict[str, tuple[str, ...]]:
        """A snapshot of the command index."""
        return {name: tuple(owners) for name, owners in self._index.items()}

    def resolve(self, token: str) -> tuple[BaseTool, Command]:
        """
        Resolve a possibly namespaced command token to (tool, command).

        Raises:
            ToolNotFoundError:     the namespace names no registered tool.
            CommandNotFoundError:  no matching command (within the namespace
                                   when one is given).
            AmbiguousCommandError: unnamespaced and provided by several tools.
        """
        namespace, name = split_namespace(token)

        if namespace is not None:
            tool = self.lookup(namespace)
            cmd = tool.get_command(name)
            if cmd is None:
                raise CommandNotFoundError(name, namespace=namespace)
            return tool, cmd

        owners = self._index.get(name)
        if not owners:
            raise CommandNotFoundError(name)
        if len(owners) > 1:
            raise AmbiguousCommandError(name, owners)
        tool = self._tools[owners[0]]
        cmd = tool.get_command(name)
        if cmd is None:
            raise CommandNotFoundError(name, namespace=tool.name)
        return tool, cmd

    # ── Dispatch ─────────────────────────────────────────────────────────────

    def dispatch(self, argv: Sequence[str], command_text: Optional[str] = None) -> DispatchResult:
        """
        Route argv to exactly one command and run it.

        Args:
            argv:         Tokenized directive. argv[0] may carry a namespace.
            command_text: The directive as the model wrote it, quoted in the
                          status line. Defaults to argv joined by spaces.

        Raises:
            DispatchError subclasses for routing failures (see resolve()).
        """
        if not argv:
            raise CommandNotFoundError("")
        command_text = command_text if command_text is not None else " ".join(argv)
        tool, cmd = self.resolve(argv[0])

        call_argv = [cmd.name, *argv[1:]]
        io = ToolIO(request_continuation=self.request_continuation)
        log.info("tool_registry.dispatch", tool=tool.name, command=cmd.name, argc=len(call_argv))

        try:
            status = tool.invoke(call_argv, io)
        except LLMError:
            # raised by request_continuation; backend failures end the session
            raise
        except Exception as e:
            log.error(
                "tool_registry.tool_failed",
                tool=tool.name,
                command=cmd.name,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            io.error(f"Tool execution failed: {type(e).__name__}: {e}\n")
            status = FAILED_STATUS

        log.debug("tool_registry.dispatch.complete", tool=tool.name, command=cmd.name, status=status)
        return DispatchResult(
            command_text=command_text,
            tool=tool.name,
            command=cmd.name,
            status=status,
            output=io.output,
        )

    # ── Dunder ───────────────────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __repr__(self) -> str:
        return f"<ToolRegistry tools={list(self._tools.keys())}>"
