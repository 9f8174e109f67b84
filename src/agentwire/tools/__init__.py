"""agentwire built-in local tools."""

from agentwire.tools.aliases import TOOL_ALIASES
from agentwire.tools.base import BaseTool
from agentwire.tools.registry import ToolRegistry

__all__ = ["BaseTool", "TOOL_ALIASES", "ToolRegistry"]
