"""Edit tool — exact string replacement inside a file."""

from __future__ import annotations

from typing import Any

from agentwire.tools.base import BaseTool
from agentwire.types.tools import ToolContext, ToolDef, ToolParam, ToolResult

_SNIPPET_CONTEXT = 3

_DEFINITION = ToolDef(
    name="Edit",
    description=(
        "Replace old_string with new_string in a file. old_string must match "
        "exactly once unless replace_all is true."
    ),
    parameters=(
        ToolParam(name="file_path", type="string", description="Path of the file to edit."),
        ToolParam(name="old_string", type="string", description="Exact text to replace."),
        ToolParam(name="new_string", type="string", description="Replacement text."),
        ToolParam(
            name="replace_all",
            type="boolean",
            description="Replace every occurrence instead of requiring a unique match.",
            required=False,
            default=False,
        ),
    ),
)


def _snippet(text: str, new_string: str) -> str:
    """A few lines around the first place ``new_string`` landed."""
    offset = text.find(new_string) if new_string else -1
    line_idx = text.count("\n", 0, offset) if offset >= 0 else 0
    lines = text.splitlines()
    span = new_string.count("\n") + 1
    start = max(0, line_idx - _SNIPPET_CONTEXT)
    end = min(len(lines), line_idx + span + _SNIPPET_CONTEXT)
    return "\n".join(f"{i:>6}\t{lines[i - 1]}" for i in range(start + 1, end + 1))


class EditTool(BaseTool):
    @property
    def definition(self) -> ToolDef:
        return _DEFINITION

    async def execute(self, args: dict[str, Any], ctx: ToolContext) -> ToolResult:
        raw_path = args.get("file_path") or args.get("path") or ""
        if not raw_path:
            return self._error("file_path is required.")
        old_string = args.get("old_string")
        new_string = args.get("new_string")
        if not isinstance(old_string, str) or not isinstance(new_string, str):
            return self._error("old_string and new_string are required strings.")
        if old_string == new_string:
            return self._error("old_string and new_string must differ.")

        path = self._resolve(str(raw_path), ctx)
        try:
            original = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return self._error(f"File not found: {path}")
        except IsADirectoryError:
            return self._error(f"Path is a directory, not a file: {path}")
        except PermissionError:
            return self._error(f"Permission denied reading: {path}", code="permission_denied")
        except UnicodeDecodeError:
            return self._error(f"Cannot read file as text: {path}")

        count = original.count(old_string) if old_string else 0
        if count == 0:
            return self._error(f"old_string not found in {path}; no changes made.")
        if count > 1 and not args.get("replace_all"):
            return self._error(
                f"old_string appears {count} times in {path}. Include more context "
                "to make it unique, or set replace_all=true."
            )

        replacements = count if args.get("replace_all") else 1
        updated = original.replace(old_string, new_string, replacements)
        try:
            path.write_text(updated, encoding="utf-8")
        except OSError as exc:
            return self._error(f"Could not write {path}: {exc}")

        return self._ok(
            f"Made {replacements} replacement(s) in {path}\n{_snippet(updated, new_string)}",
            path=str(path),
            replacements=replacements,
        )
