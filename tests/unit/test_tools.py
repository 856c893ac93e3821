"""
tests/unit/test_tools.py - Built-in Tools and Tool Catalogue Tests

Tests:
  - BaseTool command collection and validation
  - calc arithmetic and exit codes
  - ish confirmation gate, output capture and secret scrubbing
  - Tool catalogue rendering for the system prompt

Run with:
    pytest tests/unit/test_tools.py -v
"""

from __future__ import annotations

import sys

import pytest

from bangchat.agent.context_builder import NO_TOOLS_TEXT, build_system_prompt, build_tools_prompt
from bangchat.exceptions import CommandNotFoundError
from bangchat.tools.base import BaseTool, ToolIO, command
from bangchat.tools.calc import CalcTool
from bangchat.tools.registry import ToolRegistry
from bangchat.tools.shell import ShellTool, _safe_env, create_tool


def run(tool: BaseTool, *argv: str) -> tuple[int, str]:
    io = ToolIO()
    status = tool.invoke(list(argv), io)
    return status, io.output


# ─────────────────────────────────────────────────────────────────────────────
# BaseTool
# ─────────────────────────────────────────────────────────────────────────────


class TestBaseTool:
    def test_commands_in_definition_order(self):
        assert [c.name for c in CalcTool().commands()] == ["add", "sub", "mul", "div"]

    def test_docstring_is_default_description(self):
        class DocTool(BaseTool):
            name = "doc"

            @command()
            def hello(self, argv, io):
                """Say hello.

                More text that is not part of the description.
                """
                return 0

        assert DocTool().get_command("hello").description == "Say hello."

    def test_explicit_command_name(self):
        class Renamed(BaseTool):
            name = "renamed"

            @command(name="do-it")
            def _do_it(self, argv, io):
                return 0

        assert Renamed().get_command("do-it") is not None

    def test_tool_without_commands_is_rejected(self):
        class Empty(BaseTool):
            name = "empty"

        with pytest.raises(ValueError, match="no commands"):
            Empty()

    @pytest.mark.parametrize("bad", ["", "two words", "a::b"])
    def test_invalid_tool_name(self, bad):
        with pytest.raises(ValueError):
            CalcTool(name=bad)

    def test_subclass_override_replaces_command(self):
        class LoudCalc(CalcTool):
            @command(description="add loudly")
            def add(self, argv, io):
                io.write("LOUD")
                return 0

        tool = LoudCalc()
        assert [c.name for c in tool.commands()] == ["add", "sub", "mul", "div"]
        assert run(tool, "add", "1", "2") == (0, "LOUD")

    def test_invoke_unknown_command(self):
        with pytest.raises(CommandNotFoundError):
            CalcTool().invoke(["pow", "2", "3"], ToolIO())


# ─────────────────────────────────────────────────────────────────────────────
# calc
# ─────────────────────────────────────────────────────────────────────────────


class TestCalc:
    @pytest.mark.parametrize(
        "argv,expected",
        [
            (("add", "1", "2"), "3"),
            (("add", "1.5", "2"), "3.5"),
            (("sub", "10", "3", "2"), "5"),
            (("mul", "2", "3", "4"), "24"),
            (("div", "7", "2"), "3.5"),
            (("add", "-1", "1"), "0"),
        ],
    )
    def test_arithmetic(self, argv, expected):
        assert run(CalcTool(), *argv) == (0, expected)

    def test_too_few_numbers(self):
        status, output = run(CalcTool(), "add", "1")
        assert status == 2
        assert "at least two numbers" in output

    def test_not_a_number(self):
        status, output = run(CalcTool(), "mul", "2", "x")
        assert status == 2
        assert output.startswith("mul: ")

    def test_division_by_zero(self):
        assert run(CalcTool(), "div", "1", "0") == (1, "div: division by zero\n")


# ─────────────────────────────────────────────────────────────────────────────
# ish
# ─────────────────────────────────────────────────────────────────────────────


class TestShell:
    def test_rejection_does_not_run(self, monkeypatch):
        import subprocess

        def _boom(*a, **kw):
            raise AssertionError("subprocess must not run")

        monkeypatch.setattr(subprocess, "run", _boom)
        prompts: list[str] = []
        tool = ShellTool(confirm=lambda cmd: prompts.append(cmd) or False)
        status, output = run(tool, "ish", "rm", "-rf", "/tmp/x")
        assert status == 1
        assert output == "ish: Fatal: Operation was rejected by User.\n"
        assert prompts == ["rm -rf /tmp/x"]

    def test_runs_command(self):
        tool = ShellTool(confirm=lambda cmd: True)
        status, output = run(tool, "ish", sys.executable, "-c", "print('hi')")
        assert status == 0
        assert output == "hi\n\nish: subprocess finished with exit code 0\n"

    def test_reports_nonzero_exit_code(self):
        tool = ShellTool(confirm=lambda cmd: True)
        status, output = run(tool, "ish", sys.executable, "-c", "import sys; sys.exit(3)")
        assert status == 0
        assert output.endswith("ish: subprocess finished with exit code 3\n")

    def test_output_truncated_to_tail(self):
        tool = ShellTool(max_output=5, confirm=lambda cmd: True)
        status, output = run(
            tool, "ish", sys.executable, "-c", "print('abcdefghij', end='')"
        )
        assert status == 0
        assert output.startswith("fghij\nish: WARNING: Output length exceed limit 5")

    def test_missing_executable(self):
        tool = ShellTool(confirm=lambda cmd: True)
        status, output = run(tool, "ish", "definitely-not-a-real-binary-xyz")
        assert status == 1
        assert output.startswith("ish: error while executing subprocess:")

    def test_no_arguments(self):
        status, _ = run(ShellTool(confirm=lambda cmd: True), "ish")
        assert status == 1

    def test_timeout(self):
        tool = ShellTool(timeout=0.2, confirm=lambda cmd: True)
        status, output = run(tool, "ish", sys.executable, "-c", "import time; time.sleep(5)")
        assert status == 1
        assert "timed out" in output

    def test_secret_env_is_stripped(self, monkeypatch):
        monkeypatch.setenv("MY_API_KEY", "sk-secret")
        monkeypatch.setenv("HARMLESS_VALUE", "fine")
        env = _safe_env()
        assert "MY_API_KEY" not in env
        assert env["HARMLESS_VALUE"] == "fine"

    def test_create_tool_params(self):
        tool = create_tool("confirm=yes,name=sh")
        assert tool.name == "sh"
        with pytest.raises(ValueError):
            create_tool("confirm=sometimes")


# ─────────────────────────────────────────────────────────────────────────────
# Tool catalogue
# ─────────────────────────────────────────────────────────────────────────────


class TestCatalogue:
    def test_empty_registry(self):
        assert build_tools_prompt(ToolRegistry()) == NO_TOOLS_TEXT

    def test_lists_tools_and_commands(self, registry):
        text = build_tools_prompt(registry)
        assert text.startswith("# External Tools\n## Module calc\nArithmetic over decimal numbers\n")
        assert "#### add\nadd [a] [b] ... - print the sum of the numbers\n" in text
        assert text.endswith(
            "You can use external tool by starting line with '!'.\n"
            'Thus, syntax is "![command] [arg1] [arg2] [arg3] ..."\n'
        )

    def test_custom_marker(self, registry):
        assert "starting line with '/'" in build_tools_prompt(registry, marker="/")

    def test_template_without_placeholder_is_unchanged(self, registry):
        assert build_system_prompt("Be nice.", registry) == "Be nice."

    def test_placeholder_replaced(self, registry):
        text = build_system_prompt("A\n{et_system_prompt}B", registry)
        assert text.startswith("A\n# External Tools\n")
        assert text.endswith('..."\nB')
