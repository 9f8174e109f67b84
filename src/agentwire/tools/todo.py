"""TodoWrite tool — the model's own task checklist."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from agentwire.tools.base import BaseTool
from agentwire.types.tools import ToolContext, ToolDef, ToolParam, ToolResult

_STATUSES = ("pending", "in_progress", "completed")

_DEFINITION = ToolDef(
    name="TodoWrite",
    description=(
        "Replace the current todo list. Use it to plan multi-step work and "
        "mark items in_progress/completed as you go."
    ),
    parameters=(
        ToolParam(
            name="todos",
            type="array",
            description="The complete list of todos.",
            items={
                "type": "object",
                "properties": {
                    "content": {"type": "string"},
                    "status": {"type": "string", "enum": list(_STATUSES)},
                },
                "required": ["content", "status"],
            },
        ),
    ),
)


class TodoWriteTool(BaseTool):
    def __init__(self, on_change: Callable[[list[dict[str, str]]], Any] | None = None) -> None:
        self.todos: list[dict[str, str]] = []
        self._on_change = on_change

    @property
    def definition(self) -> ToolDef:
        return _DEFINITION

    async def execute(self, args: dict[str, Any], ctx: ToolContext) -> ToolResult:
        raw = args.get("todos")
        if not isinstance(raw, list):
            return self._error("todos must be an array.")

        todos: list[dict[str, str]] = []
        for i, item in enumerate(raw):
            if not isinstance(item, dict) or not item.get("content"):
                return self._error(f"todos[{i}] needs a non-empty 'content'.")
            status = item.get("status", "pending")
            if status not in _STATUSES:
                return self._error(f"todos[{i}] has invalid status {status!r}.")
            todos.append({"content": str(item["content"]), "status": status})

        self.todos = todos
        if self._on_change is not None:
            self._on_change(list(todos))

        done = sum(t["status"] == "completed" for t in todos)
        lines = [f"Updated todo list: {done}/{len(todos)} completed"]
        marks = {"pending": "[ ]", "in_progress": "[~]", "completed": "[x]"}
        lines += [f"{marks[t['status']]} {t['content']}" for t in todos]
        return self._ok("\n".join(lines), todos=todos)
