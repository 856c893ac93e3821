"""
tests/unit/test_tool_registry.py - Tool Registry Unit Tests

Covers registration, the command -> owners index, namespace and ambiguity
resolution, and failure capture during dispatch.

Run with:
    pytest tests/unit/test_tool_registry.py -v
"""

from __future__ import annotations

import pytest

from bangchat.exceptions import (
    AmbiguousCommandError,
    CommandNotFoundError,
    GenerationError,
    ToolNameConflictError,
    ToolNotFoundError,
)
from bangchat.tools.base import BaseTool, ToolIO, command
from bangchat.tools.registry import FAILED_STATUS, DispatchResult, ToolRegistry, split_namespace


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


class RecordingTool(BaseTool):
    """Tool whose commands record their argv and echo a fixed reply."""

    description = "Recording tool"

    def __init__(self, name: str, reply: str = "ok", status: int = 0):
        super().__init__(name=name)
        self.calls: list[list[str]] = []
        self.reply = reply
        self.status = status

    @command(description="add numbers")
    def add(self, argv: list[str], io: ToolIO) -> int:
        self.calls.append(argv)
        io.write(self.reply)
        return self.status

    @command(description="only on recording tools")
    def cmd(self, argv: list[str], io: ToolIO) -> int:
        self.calls.append(argv)
        io.write(self.reply)
        return self.status


class BrokenTool(BaseTool):
    name = "broken"
    description = "Always fails"

    @command(description="raise")
    def explode(self, argv: list[str], io: ToolIO) -> int:
        io.write("partial ")
        raise RuntimeError("kaboom")


class ReaderTool(BaseTool):
    name = "reader"
    description = "Reads model input"

    @command(description="read a line")
    def ask(self, argv: list[str], io: ToolIO) -> int:
        io.write(f"got: {io.read()}")
        return 0


@pytest.fixture
def empty_registry():
    return ToolRegistry()


# ─────────────────────────────────────────────────────────────────────────────
# Registration
# ─────────────────────────────────────────────────────────────────────────────


class TestRegistration:
    def test_register_and_lookup(self, empty_registry):
        tool = RecordingTool("toolA")
        empty_registry.register(tool)
        assert "toolA" in empty_registry
        assert empty_registry.lookup("toolA") is tool
        assert len(empty_registry) == 1

    def test_lookup_unknown_raises(self, empty_registry):
        with pytest.raises(ToolNotFoundError) as exc:
            empty_registry.lookup("nope")
        assert exc.value.name == "nope"

    def test_duplicate_name_first_wins(self, empty_registry):
        first = RecordingTool("toolA", reply="first")
        second = RecordingTool("toolA", reply="second")
        empty_registry.register(first)
        with pytest.raises(ToolNameConflictError):
            empty_registry.register(second)
        assert empty_registry.lookup("toolA") is first
        assert empty_registry.owners("add") == ("toolA",)

    def test_index_tracks_every_command(self, empty_registry):
        empty_registry.register(RecordingTool("toolA"))
        assert empty_registry.commands() == {"add": ("toolA",), "cmd": ("toolA",)}

    def test_shared_command_lists_all_owners_in_order(self, empty_registry):
        empty_registry.register(RecordingTool("toolA"))
        empty_registry.register(RecordingTool("toolB"))
        assert empty_registry.owners("add") == ("toolA", "toolB")

    def test_tools_in_registration_order(self, empty_registry):
        empty_registry.register(RecordingTool("zeta"))
        empty_registry.register(RecordingTool("alpha"))
        assert [t.name for t in empty_registry.tools()] == ["zeta", "alpha"]

    def test_unregister_unknown_raises(self, empty_registry):
        with pytest.raises(ToolNotFoundError):
            empty_registry.unregister("ghost")

    def test_unregister_returns_tool_intact(self, empty_registry):
        tool = RecordingTool("toolA")
        empty_registry.register(tool)
        assert empty_registry.unregister("toolA") is tool
        assert tool.get_command("add") is not None
        assert "toolA" not in empty_registry


# ─────────────────────────────────────────────────────────────────────────────
# Dispatch
# ─────────────────────────────────────────────────────────────────────────────


class TestDispatch:
    def test_unnamespaced_single_owner(self, empty_registry):
        tool = RecordingTool("toolA", reply="3")
        empty_registry.register(tool)
        result = empty_registry.dispatch(["add", "1", "2"], command_text="add 1 2")
        assert tool.calls == [["add", "1", "2"]]
        assert result == DispatchResult(
            command_text="add 1 2", tool="toolA", command="add", status=0, output="3"
        )

    def test_render_appends_status_line(self):
        result = DispatchResult(command_text="add 1 2", tool="calc", command="add", status=0, output="3")
        assert result.render() == '3\nCommand "add 1 2" is returned with code 0\n'

    def test_command_text_defaults_to_joined_argv(self, empty_registry):
        empty_registry.register(RecordingTool("toolA"))
        assert empty_registry.dispatch(["add", "x"]).command_text == "add x"

    def test_ambiguous_invokes_nobody(self, empty_registry):
        a, b = RecordingTool("toolA"), RecordingTool("toolB")
        empty_registry.register(a)
        empty_registry.register(b)
        with pytest.raises(AmbiguousCommandError) as exc:
            empty_registry.dispatch(["add", "1", "2"])
        assert exc.value.owners == ("toolA", "toolB")
        assert exc.value.command == "add"
        assert a.calls == [] and b.calls == []

    def test_three_owners_resolve_none(self, empty_registry):
        tools = [RecordingTool(n) for n in ("a", "b", "c")]
        for t in tools:
            empty_registry.register(t)
        with pytest.raises(AmbiguousCommandError) as exc:
            empty_registry.dispatch(["add"])
        assert exc.value.owners == ("a", "b", "c")
        assert all(t.calls == [] for t in tools)

    def test_namespace_resolves_ambiguity(self, empty_registry):
        a, b = RecordingTool("toolA"), RecordingTool("toolB")
        empty_registry.register(a)
        empty_registry.register(b)
        result = empty_registry.dispatch(["toolB::add", "5"], command_text="toolB::add 5")
        assert b.calls == [["add", "5"]]
        assert a.calls == []
        assert result.tool == "toolB"
        assert result.command_text == "toolB::add 5"

    def test_namespace_restricts_to_that_tool(self, empty_registry, calc_tool):
        owner = RecordingTool("toolB")
        empty_registry.register(calc_tool)
        empty_registry.register(owner)
        # "cmd" resolves unnamespaced to toolB ...
        empty_registry.dispatch(["cmd"])
        # ... but not through another tool's namespace
        with pytest.raises(CommandNotFoundError) as exc:
            empty_registry.dispatch(["calc::cmd"])
        assert exc.value.namespace == "calc"
        assert owner.calls == [["cmd"]]

    def test_unknown_namespace(self, empty_registry):
        empty_registry.register(RecordingTool("toolA"))
        with pytest.raises(ToolNotFoundError) as exc:
            empty_registry.dispatch(["nope::add"])
        assert exc.value.name == "nope"

    def test_unknown_command(self, empty_registry):
        empty_registry.register(RecordingTool("toolA"))
        with pytest.raises(CommandNotFoundError):
            empty_registry.dispatch(["mul", "2", "3"])

    def test_unregister_sole_owner_makes_command_undispatchable(self, empty_registry):
        empty_registry.register(RecordingTool("toolA"))
        empty_registry.unregister("toolA")
        assert "add" not in empty_registry.commands()
        with pytest.raises(CommandNotFoundError):
            empty_registry.dispatch(["add"])

    def test_unregister_one_of_two_owners(self, empty_registry):
        a, b = RecordingTool("toolA"), RecordingTool("toolB")
        empty_registry.register(a)
        empty_registry.register(b)
        empty_registry.unregister("toolA")

        empty_registry.dispatch(["add", "1"])
        empty_registry.dispatch(["toolB::add", "2"])
        assert b.calls == [["add", "1"], ["add", "2"]]
        assert empty_registry.owners("add") == ("toolB",)
        with pytest.raises(ToolNotFoundError):
            empty_registry.dispatch(["toolA::add"])

    def test_reregister_after_unregister(self, empty_registry):
        tool = RecordingTool("toolA")
        empty_registry.register(tool)
        empty_registry.unregister("toolA")
        empty_registry.register(tool)
        assert empty_registry.owners("add") == ("toolA",)

    def test_tool_exception_is_captured(self, empty_registry):
        empty_registry.register(BrokenTool())
        result = empty_registry.dispatch(["explode"])
        assert result.status == FAILED_STATUS
        assert result.output.startswith("partial ")
        assert "Tool execution failed: RuntimeError: kaboom" in result.output

    def test_nonzero_status_passes_through(self, empty_registry):
        empty_registry.register(RecordingTool("toolA", reply="bad", status=3))
        result = empty_registry.dispatch(["add"])
        assert result.status == 3
        assert 'is returned with code 3' in result.render()


# ─────────────────────────────────────────────────────────────────────────────
# Continuation bridge
# ─────────────────────────────────────────────────────────────────────────────


class TestContinuation:
    def test_read_asks_for_continuation(self):
        reg = ToolRegistry(request_continuation=lambda: "yes please")
        reg.register(ReaderTool())
        assert reg.dispatch(["ask"]).output == "got: yes please"

    def test_read_without_source_is_a_tool_failure(self, empty_registry):
        empty_registry.register(ReaderTool())
        result = empty_registry.dispatch(["ask"])
        assert result.status == FAILED_STATUS
        assert "no input source" in result.output

    def test_generation_failure_during_read_propagates(self):
        def _fail() -> str:
            raise GenerationError("backend down")

        reg = ToolRegistry(request_continuation=_fail)
        reg.register(ReaderTool())
        with pytest.raises(GenerationError):
            reg.dispatch(["ask"])


def test_split_namespace():
    assert split_namespace("calc::add") == ("calc", "add")
    assert split_namespace("add") == (None, "add")
    assert split_namespace("a::b::c") == ("a", "b::c")
