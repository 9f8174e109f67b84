"""LS tool — list a directory."""

from __future__ import annotations

from typing import Any

from agentwire.tools.base import BaseTool
from agentwire.tools.glob import IGNORED_DIRS
from agentwire.types.tools import ToolContext, ToolDef, ToolParam, ToolResult

_MAX_ENTRIES = 500

_DEFINITION = ToolDef(
    name="LS",
    description="List the entries of a directory. Directories are shown with a trailing '/'.",
    parameters=(
        ToolParam(
            name="path",
            type="string",
            description="Directory to list. Defaults to the working directory.",
            required=False,
        ),
        ToolParam(
            name="show_hidden",
            type="boolean",
            description="Include dot-files.",
            required=False,
            default=False,
        ),
    ),
)


class LSTool(BaseTool):
    @property
    def definition(self) -> ToolDef:
        return _DEFINITION

    async def execute(self, args: dict[str, Any], ctx: ToolContext) -> ToolResult:
        root = self._resolve(args["path"], ctx) if args.get("path") else ctx.cwd
        if not root.exists():
            return self._error(f"Path does not exist: {root}")
        if not root.is_dir():
            return self._error(f"Not a directory: {root}")

        show_hidden = bool(args.get("show_hidden"))
        try:
            entries = sorted(root.iterdir(), key=lambda p: (not p.is_dir(), p.name.lower()))
        except PermissionError:
            return self._error(f"Permission denied: {root}", code="permission_denied")

        lines = []
        for entry in entries:
            if entry.name in IGNORED_DIRS or (entry.name.startswith(".") and not show_hidden):
                continue
            lines.append(f"{entry.name}/" if entry.is_dir() else entry.name)

        if not lines:
            return self._ok(f"{root} is empty", count=0)
        shown = lines[:_MAX_ENTRIES]
        if len(lines) > _MAX_ENTRIES:
            shown.append(f"[{len(lines) - _MAX_ENTRIES} more entries]")
        return self._ok(f"{root}:\n" + "\n".join(shown), count=len(lines))
