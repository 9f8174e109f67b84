"""Read tool — numbered file contents with an optional line window."""

from __future__ import annotations

from typing import Any

from agentwire.tools.base import BaseTool
from agentwire.types.tools import ToolContext, ToolDef, ToolParam, ToolResult

_MAX_LINE_LENGTH = 2000
_DEFAULT_LIMIT = 2000

_DEFINITION = ToolDef(
    name="Read",
    description=(
        "Read a text file. Returns lines prefixed with their 1-based number. "
        "Use offset/limit to page through large files; long lines are cut at "
        f"{_MAX_LINE_LENGTH} characters. Also reads tool output files saved "
        "when an earlier result was too large to show inline."
    ),
    parameters=(
        ToolParam(
            name="file_path",
            type="string",
            description="Absolute or cwd-relative path to the file to read.",
        ),
        ToolParam(
            name="offset",
            type="integer",
            description="1-based line number to start reading from.",
            required=False,
        ),
        ToolParam(
            name="limit",
            type="integer",
            description=f"Maximum number of lines to return (default {_DEFAULT_LIMIT}).",
            required=False,
        ),
    ),
)


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class ReadTool(BaseTool):
    @property
    def definition(self) -> ToolDef:
        return _DEFINITION

    async def execute(self, args: dict[str, Any], ctx: ToolContext) -> ToolResult:
        raw_path = args.get("file_path") or args.get("path") or ""
        if not raw_path:
            return self._error("file_path is required.")
        path = self._resolve(str(raw_path), ctx)

        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return self._error(f"File not found: {path}")
        except IsADirectoryError:
            return self._error(f"Path is a directory, not a file: {path}")
        except PermissionError:
            return self._error(f"Permission denied: {path}", code="permission_denied")
        except UnicodeDecodeError:
            return self._error(f"Cannot read file as text (binary or unsupported encoding): {path}")

        lines = text.splitlines()
        start = max(0, _as_int(args.get("offset"), 1) - 1)
        end = start + max(1, _as_int(args.get("limit"), _DEFAULT_LIMIT))

        numbered = []
        for lineno, line in enumerate(lines[start:end], start=start + 1):
            if len(line) > _MAX_LINE_LENGTH:
                line = line[:_MAX_LINE_LENGTH] + " [line truncated]"
            numbered.append(f"{lineno:>6}\t{line}")

        content = "\n".join(numbered) if numbered else "(empty file)"
        if end < len(lines):
            content += f"\n[{len(lines) - end} more lines; continue with offset={end + 1}]"

        return self._ok(content, path=str(path), total_lines=len(lines))
