"""
bangchat/agent/context_builder.py - System Prompt Builder

Renders the catalogue of registered tools the model sees, and splices it
into the user's system prompt at the {et_system_prompt} placeholder.

    # External Tools
    ## Module calc
    Arithmetic over decimal numbers

    ### Function(s)
    #### add
    add [a] [b] ... - print the sum of the numbers
    ...
    You can use external tool by starting line with '!'.
    Thus, syntax is "![command] [arg1] [arg2] [arg3] ..."
"""

from __future__ import annotations

from bangchat.agent.stream_parser import DIRECTIVE_MARKER
from bangchat.tools.registry import ToolRegistry

TOOLS_PLACEHOLDER = "{et_system_prompt}"
NO_TOOLS_TEXT = "No external tools are available.\n"


def build_tools_prompt(registry: ToolRegistry, marker: str = DIRECTIVE_MARKER) -> str:
    tools = registry.tools()
    if not tools:
        return NO_TOOLS_TEXT

    parts = ["# External Tools\n"]
    for tool in tools:
        parts.append(f"## Module {tool.name}\n{tool.description}\n\n### Function(s)\n")
        for cmd in tool.commands():
            parts.append(f"#### {cmd.name}\n{cmd.description}\n")
    parts.append(
        f"You can use external tool by starting line with '{marker}'.\n"
        f'Thus, syntax is "{marker}[command] [arg1] [arg2] [arg3] ..."\n'
    )
    return "".join(parts)


def build_system_prompt(template: str, registry: ToolRegistry, marker: str = DIRECTIVE_MARKER) -> str:
    """Replace every {et_system_prompt} in template with the tool catalogue."""
    if TOOLS_PLACEHOLDER not in template:
        return template
    return template.replace(TOOLS_PLACEHOLDER, build_tools_prompt(registry, marker))
