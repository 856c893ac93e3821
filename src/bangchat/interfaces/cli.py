"""
bangchat/interfaces/cli.py - bangchat Terminal REPL

Interactive front end for a SessionOrchestrator. Uses rich for rendering.

Features:
  - "User:" prompt; Ctrl+D (end of input) behaves like the exit token
  - Assistant text streamed as it is generated
  - Thoughts shown dimmed with --show-thinking, hidden otherwise
  - Tool results shown in a "System" panel before they go back to the model

Usage:
    bangchat --lm ollama --lm-args model=llama3.1 --tool calc --show-thinking
"""

from __future__ import annotations

from typing import Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from bangchat.agent.orchestrator import SessionOrchestrator
from bangchat.observability.logger import get_logger

log = get_logger(__name__)


class ChatCLI:
    def __init__(self, console: Optional[Console] = None, show_thinking: bool = False) -> None:
        self.console = console or Console()
        self.show_thinking = show_thinking

    # ── Sinks handed to the orchestrator ─────────────────────────────────────

    def write_visible(self, text: str) -> None:
        self.console.print(text, end="", markup=False, highlight=False, soft_wrap=True)

    def write_thought(self, text: str) -> None:
        if self.show_thinking and text:
            self.console.print(
                text, end="", style="dim italic", markup=False, highlight=False, soft_wrap=True
            )

    def write_tool_output(self, text: str) -> None:
        self.console.print()
        self.console.print(
            Panel(
                Text(text.rstrip("\n")),
                title="System",
                title_align="left",
                border_style="cyan",
                box=box.ROUNDED,
            )
        )

    def sinks(self) -> dict:
        return {
            "visible_sink": self.write_visible,
            "thought_sink": self.write_thought,
            "tool_output_sink": self.write_tool_output,
        }

    # ── Input ────────────────────────────────────────────────────────────────

    def read_input(self) -> Optional[str]:
        """Return one line from the user, or None at end of input."""
        try:
            return self.console.input("[bold green]User:[/] ")
        except (EOFError, KeyboardInterrupt):
            self.console.print()
            return None

    # ── Loop ─────────────────────────────────────────────────────────────────

    def run(self, orchestrator: SessionOrchestrator) -> int:
        orchestrator.start()
        if orchestrator.state_loaded:
            self.console.print("[dim]Restored previous session state.[/]")

        def _read() -> Optional[str]:
            text = self.read_input()
            if text is not None and text.strip() not in ("", orchestrator.exit_token):
                self.console.print("[bold blue]Assistant:[/]", end="")
            return text

        code = orchestrator.run(self._after_each(_read))
        self.console.print("[dim]Goodbye.[/]")
        return code

    def _after_each(self, read):
        """Wrap read so every exchange ends on a fresh line."""
        first = True

        def _wrapped() -> Optional[str]:
            nonlocal first
            if not first:
                self.console.print()
            first = False
            return read()

        return _wrapped
