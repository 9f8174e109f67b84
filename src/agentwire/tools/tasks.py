"""TaskStatus tool — inspect and stop commands started by Bash."""

from __future__ import annotations

from typing import Any

from agentwire.tools.base import BaseTool
from agentwire.types.tools import ToolContext, ToolDef, ToolParam, ToolResult

_TAIL_CHUNKS = 50

_DEFINITION = ToolDef(
    name="TaskStatus",
    description=(
        "Manage shell tasks started by Bash. action=list shows all tasks; "
        "status shows health; output returns recent stdout/stderr; kill "
        "stops the task."
    ),
    parameters=(
        ToolParam(
            name="action",
            type="string",
            description="What to do.",
            enum=("list", "status", "output", "kill"),
            required=False,
            default="list",
        ),
        ToolParam(
            name="task_id",
            type="string",
            description="Task id returned by Bash (required except for list).",
            required=False,
        ),
    ),
)


class TaskStatusTool(BaseTool):
    @property
    def definition(self) -> ToolDef:
        return _DEFINITION

    async def execute(self, args: dict[str, Any], ctx: ToolContext) -> ToolResult:
        registry = ctx.tasks
        if registry is None:
            return self._error("No task registry is available in this session.", code="invalid_input")

        action = args.get("action") or ("output" if args.get("task_id") or args.get("bash_id") else "list")
        if action == "list":
            tasks = registry.get_all()
            if not tasks:
                return self._ok("No tasks.", tasks=[])
            lines = [
                f"{t.id}  {t.status.value:<9} pid={t.pid}  {t.runtime:.0f}s  {t.command}"
                for t in tasks
            ]
            return self._ok("\n".join(lines), tasks=[t.to_dict() for t in tasks])

        task_id = args.get("task_id") or args.get("bash_id") or args.get("shell_id")
        task = registry.get(task_id) if task_id else None
        if task is None:
            return self._error(f"Unknown task: {task_id}")

        match action:
            case "status":
                health = registry.check_health(task.id)
                issues = "; ".join(health.issues) or "none"
                return self._ok(
                    f"{task.id}: {task.status.value}, alive={health.alive}, "
                    f"responding={health.responding}, issues: {issues}",
                    task=task.to_dict(),
                    alive=health.alive,
                    responding=health.responding,
                    issues=list(health.issues),
                )
            case "output":
                out = "".join(registry.get_output(task.id, tail=_TAIL_CHUNKS))
                err = "".join(registry.get_errors(task.id, tail=_TAIL_CHUNKS))
                body = out or "(no stdout)"
                if err:
                    body += f"\n--- stderr ---\n{err}"
                return self._ok(f"[{task.id} {task.status.value}]\n{body}", task=task.to_dict())
            case "kill":
                if task.finished:
                    return self._ok(f"{task.id} already {task.status.value}", task=task.to_dict())
                if not registry.kill_task(task.id):
                    return self._error(f"Could not signal {task.id}")
                return self._ok(f"Sent SIGTERM to {task.id}", task=task.to_dict())
            case _:
                return self._error(f"Unknown action: {action}")
