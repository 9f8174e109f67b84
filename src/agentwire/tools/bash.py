"""Bash tool — runs shell commands through the TaskRegistry."""

from __future__ import annotations

import logging
import re
from typing import Any

from agentwire.errors import RendezvousClosed
from agentwire.tasks.registry import TaskRegistry, TaskStatus
from agentwire.tools.base import BaseTool
from agentwire.tools.safety import dangerous_reason
from agentwire.types.tools import ErrorKind, ToolContext, ToolDef, ToolParam, ToolResult

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT_MS = 120_000
_MAX_TIMEOUT_MS = 600_000
_MAX_OUTPUT_CHARS = 30_000

# Commands that keep running (dev servers, watchers) default to background.
_LONG_RUNNING = re.compile(
    r"\b(npm|yarn|pnpm|bun)\s+(run\s+)?(dev|start|serve|watch)\b"
    r"|\b(uvicorn|gunicorn|flask\s+run|manage\.py\s+runserver|http\.server|vite|nodemon)\b"
    r"|--watch\b",
)

_DEFINITION = ToolDef(
    name="Bash",
    description=(
        "Execute a shell command in the working directory and return its "
        "combined output. Set run_in_background for servers or long jobs; "
        "inspect them later with the TaskStatus tool. Timeout is in "
        f"milliseconds (default {_DEFAULT_TIMEOUT_MS}, max {_MAX_TIMEOUT_MS})."
    ),
    parameters=(
        ToolParam(name="command", type="string", description="The shell command to execute."),
        ToolParam(
            name="timeout",
            type="integer",
            description="Milliseconds before the process is killed.",
            required=False,
            default=_DEFAULT_TIMEOUT_MS,
        ),
        ToolParam(
            name="run_in_background",
            type="boolean",
            description="Start the command and return immediately with a task id.",
            required=False,
            default=False,
        ),
        ToolParam(
            name="description",
            type="string",
            description="Short label for the command, shown in task listings.",
            required=False,
        ),
    ),
)


def _clip(text: str) -> str:
    if len(text) <= _MAX_OUTPUT_CHARS:
        return text
    return text[:_MAX_OUTPUT_CHARS] + f"\n[{len(text) - _MAX_OUTPUT_CHARS} characters truncated]"


class BashTool(BaseTool):
    def __init__(self, tasks: TaskRegistry | None = None) -> None:
        self._own_tasks = tasks

    @property
    def definition(self) -> ToolDef:
        return _DEFINITION

    def _registry(self, ctx: ToolContext) -> TaskRegistry:
        registry = ctx.tasks or self._own_tasks
        if registry is None:
            registry = self._own_tasks = TaskRegistry()
        return registry

    async def execute(self, args: dict[str, Any], ctx: ToolContext) -> ToolResult:
        command = str(args.get("command") or "").strip()
        if not command:
            return self._error("command is required.")

        try:
            timeout_ms = int(args.get("timeout") or _DEFAULT_TIMEOUT_MS)
        except (TypeError, ValueError):
            timeout_ms = _DEFAULT_TIMEOUT_MS
        timeout_ms = max(1, min(timeout_ms, _MAX_TIMEOUT_MS))

        reason = dangerous_reason(command)
        if reason and not ctx.skip_permissions and ctx.interaction is not None:
            try:
                approved = await ctx.interaction.request_permission(
                    ctx.tool_use_id, "Bash", command, reason,
                )
            except RendezvousClosed:
                approved = False
            if ctx.audit is not None:
                ctx.audit.log_permission_decision("Bash", command, approved)
            if not approved:
                return self._error(
                    f"User denied permission to run: {command}",
                    code="permission_denied",
                    kind=ErrorKind.FATAL,
                )

        background = bool(args.get("run_in_background")) or bool(_LONG_RUNNING.search(command))
        registry = self._registry(ctx)
        task = await registry.run_task(
            command,
            name=args.get("description") or None,
            cwd=ctx.cwd,
            timeout=None if background else timeout_ms / 1000,
            background=background,
        )

        output = "".join(registry.get_output(task.id))
        errors = "".join(registry.get_errors(task.id))

        if background:
            if task.finished and task.status != TaskStatus.COMPLETED:
                return self._error(
                    _clip(f"Background command exited immediately (code {task.exit_code}).\n"
                          f"{output}{errors}"),
                    code="handler_exception",
                    task_id=task.id,
                )
            return self._ok(
                f"Started in background as {task.id} (pid {task.pid}). "
                "Use TaskStatus to check output.",
                task_id=task.id,
                pid=task.pid,
            )

        combined = _clip((output + errors).rstrip("\n")) or "Command completed with no output"
        if task.status == TaskStatus.KILLED:
            return self._error(
                f"{combined}\nCommand timed out after {timeout_ms} ms and was killed.",
                code="timeout",
                task_id=task.id,
            )
        if task.exit_code != 0:
            return self._error(
                f"{combined}\n[Exit code: {task.exit_code}]",
                code="handler_exception",
                exit_code=task.exit_code,
            )
        return self._ok(combined, exit_code=0)
