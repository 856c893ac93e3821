"""
bangchat/exceptions.py - Bangchat Unified Error Hierarchy

Every layer of the runtime raises typed subclasses of BangchatError, never
bare Exception. Import from here, not from individual modules:

    from bangchat.exceptions import AmbiguousCommandError, PluginLoadError

Hierarchy:
    BangchatError
    ├── PluginError
    │   ├── PluginLoadError
    │   └── ContractError
    ├── ToolError
    │   ├── ToolNameConflictError
    │   └── DispatchError
    │       ├── ToolNotFoundError
    │       ├── CommandNotFoundError
    │       ├── AmbiguousCommandError
    │       └── DirectiveParseError
    ├── SessionError
    └── LLMError
        ├── IngestError
        ├── GenerationError
        │   ├── LLMConnectionError
        │   └── LLMRateLimitError
        └── StateError

Dispatch errors are local: the stream parser turns them into diagnostic text
for the model. LLM errors are fatal to the session.
"""

from __future__ import annotations

from typing import Optional, Sequence


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class BangchatError(Exception):
    """Base class for all bangchat exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Plugin layer
# ─────────────────────────────────────────────────────────────────────────────

class PluginError(BangchatError):
    """Base for plugin loading errors. Always fatal at startup."""


class PluginLoadError(PluginError):
    """The plugin module or its constructor symbol could not be resolved."""

    def __init__(self, reference: str, message: str = "") -> None:
        self.reference = reference
        super().__init__(message or f"Failed to load plugin '{reference}'")


class ContractError(PluginError):
    """A plugin constructor rejected its parameters or built something unusable."""


# ─────────────────────────────────────────────────────────────────────────────
# Tool layer
# ─────────────────────────────────────────────────────────────────────────────

class ToolError(BangchatError):
    """Base for tool registry errors."""


class ToolNameConflictError(ToolError):
    """A tool with the same name is already registered. First registration wins."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Name duplication found: external tool: {name}")


class DispatchError(ToolError):
    """A directive could not be routed to exactly one command."""


class ToolNotFoundError(DispatchError):
    """No tool is registered under the requested name or namespace."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f'Module name "{name}" is not found.')


class CommandNotFoundError(DispatchError):
    """No tool (or not the named tool) provides the requested command."""

    def __init__(self, command: str, namespace: Optional[str] = None) -> None:
        self.command = command
        self.namespace = namespace
        where = f" in tool '{namespace}'" if namespace else ""
        super().__init__(f"Command '{command}' not found{where}.")


class AmbiguousCommandError(DispatchError):
    """More than one tool provides the command and no namespace was given."""

    def __init__(self, command: str, owners: Sequence[str]) -> None:
        self.command = command
        self.owners = tuple(owners)
        super().__init__(
            f'Command "{command}" is provided by some tools: {", ".join(self.owners)}'
        )


class DirectiveParseError(DispatchError):
    """The directive text could not be tokenized with shell quoting rules."""

    def __init__(self, text: str, reason: str) -> None:
        self.text = text
        self.reason = reason
        super().__init__(f'Failed to parse command "{text}": {reason}')


# ─────────────────────────────────────────────────────────────────────────────
# Session layer
# ─────────────────────────────────────────────────────────────────────────────

class SessionError(BangchatError):
    """The session orchestrator was used out of order (e.g. after shutdown)."""


# ─────────────────────────────────────────────────────────────────────────────
# LLM layer  (re-exported by bangchat.brain)
# ─────────────────────────────────────────────────────────────────────────────

class LLMError(BangchatError):
    """Base exception for all language model backend errors."""

    def __init__(self, message: str, provider: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class IngestError(LLMError):
    """The backend could not absorb rendered prompt text into its context."""


class GenerationError(LLMError):
    """Streaming generation failed."""


class LLMConnectionError(GenerationError):
    """Provider unreachable or timed out. Retried before the first fragment."""


class LLMRateLimitError(GenerationError):
    """Rate limit hit. Retried with exponential backoff."""

    def __init__(self, message: str, provider: str = "", retry_after: Optional[float] = None):
        super().__init__(message, provider, status_code=429)
        self.retry_after = retry_after


class StateError(LLMError):
    """Saving or loading backend state failed."""


__all__ = [
    "BangchatError",
    # Plugin
    "PluginError",
    "PluginLoadError",
    "ContractError",
    # Tool
    "ToolError",
    "ToolNameConflictError",
    "DispatchError",
    "ToolNotFoundError",
    "CommandNotFoundError",
    "AmbiguousCommandError",
    "DirectiveParseError",
    # Session
    "SessionError",
    # LLM
    "LLMError",
    "IngestError",
    "GenerationError",
    "LLMConnectionError",
    "LLMRateLimitError",
    "StateError",
]
