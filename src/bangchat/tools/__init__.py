from bangchat.tools.base import BaseTool, Command, ToolIO, command
from bangchat.tools.registry import DispatchResult, ToolRegistry

__all__ = ["BaseTool", "Command", "ToolIO", "command", "DispatchResult", "ToolRegistry"]
