"""Write tool — creates or replaces a file."""

from __future__ import annotations

from typing import Any

from agentwire.tools.base import BaseTool
from agentwire.types.tools import ToolContext, ToolDef, ToolParam, ToolResult

_DEFINITION = ToolDef(
    name="Write",
    description=(
        "Write content to a file, creating parent directories as needed. "
        "Replaces the file if it already exists."
    ),
    parameters=(
        ToolParam(
            name="file_path",
            type="string",
            description="Absolute or cwd-relative path of the file to write.",
        ),
        ToolParam(
            name="content",
            type="string",
            description="The full new content of the file.",
        ),
    ),
)


class WriteTool(BaseTool):
    @property
    def definition(self) -> ToolDef:
        return _DEFINITION

    async def execute(self, args: dict[str, Any], ctx: ToolContext) -> ToolResult:
        raw_path = args.get("file_path") or args.get("path") or ""
        if not raw_path:
            return self._error("file_path is required.")
        content = args.get("content")
        if not isinstance(content, str):
            return self._error("content must be a string.")

        path = self._resolve(str(raw_path), ctx)
        created = not path.exists()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        except PermissionError:
            return self._error(f"Permission denied writing to: {path}", code="permission_denied")
        except OSError as exc:
            return self._error(f"Could not write {path}: {exc}")

        line_count = content.count("\n") + (1 if content and not content.endswith("\n") else 0)
        verb = "Created" if created else "Updated"
        return self._ok(
            f"{verb} {path} ({line_count} lines, {len(content.encode('utf-8'))} bytes)",
            path=str(path),
            created=created,
        )
