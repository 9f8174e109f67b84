"""Outbound context budgeting."""

from agentwire.context.manager import ContextManager
from agentwire.context.store import OutputStore

__all__ = ["ContextManager", "OutputStore"]
