"""Process table for commands started by tools."""

from agentwire.tasks.registry import TaskHealth, TaskInfo, TaskRegistry, TaskStatus

__all__ = ["TaskHealth", "TaskInfo", "TaskRegistry", "TaskStatus"]
