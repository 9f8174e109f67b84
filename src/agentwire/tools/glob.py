"""Glob tool — find files by pattern, newest first."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from agentwire.tools.base import BaseTool
from agentwire.types.tools import ToolContext, ToolDef, ToolParam, ToolResult

_MAX_RESULTS = 200
IGNORED_DIRS = frozenset({".git", "node_modules", "__pycache__", ".venv", "dist", "build"})

_DEFINITION = ToolDef(
    name="Glob",
    description=(
        "Find files matching a glob pattern such as '**/*.py'. Results are "
        f"sorted by modification time, newest first, at most {_MAX_RESULTS}."
    ),
    parameters=(
        ToolParam(name="pattern", type="string", description="Glob pattern to match."),
        ToolParam(
            name="path",
            type="string",
            description="Directory to search from. Defaults to the working directory.",
            required=False,
        ),
    ),
)


def _mtime(path: Path) -> float:
    try:
        return path.stat().st_mtime
    except OSError:
        return 0.0


class GlobTool(BaseTool):
    @property
    def definition(self) -> ToolDef:
        return _DEFINITION

    async def execute(self, args: dict[str, Any], ctx: ToolContext) -> ToolResult:
        pattern = args.get("pattern") or ""
        if not pattern:
            return self._error("pattern is required.")

        root = self._resolve(args["path"], ctx) if args.get("path") else ctx.cwd
        if not root.is_dir():
            return self._error(f"Not a directory: {root}")

        try:
            matched = [
                p for p in root.glob(pattern)
                if p.is_file() and not IGNORED_DIRS.intersection(p.relative_to(root).parts)
            ]
        except (ValueError, NotImplementedError) as exc:
            return self._error(f"Invalid glob pattern {pattern!r}: {exc}")

        matched.sort(key=_mtime, reverse=True)
        shown = matched[:_MAX_RESULTS]
        if not shown:
            return self._ok(f"No files matched '{pattern}' in {root}", count=0)

        lines = [str(p) for p in shown]
        if len(matched) > len(shown):
            lines.append(f"[{len(matched) - len(shown)} more matches not shown]")
        return self._ok("\n".join(lines), count=len(matched))
