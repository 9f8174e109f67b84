"""Grep tool — regex search over file contents.

Uses ripgrep when it is on PATH and falls back to a pure-Python scan.
"""

from __future__ import annotations

import asyncio
import json
import re
import shutil
from pathlib import Path
from typing import Any

from agentwire.tools.base import BaseTool
from agentwire.tools.glob import IGNORED_DIRS
from agentwire.types.tools import ToolContext, ToolDef, ToolParam, ToolResult

_DEFAULT_MAX_RESULTS = 100
_RG_TIMEOUT = 30.0

_DEFINITION = ToolDef(
    name="Grep",
    description=(
        "Search file contents for a regular expression. Returns matches as "
        "'path:line: text'. Binary files and dependency/cache directories "
        "are skipped."
    ),
    parameters=(
        ToolParam(name="pattern", type="string", description="Regular expression to search for."),
        ToolParam(
            name="path",
            type="string",
            description="File or directory to search. Defaults to the working directory.",
            required=False,
        ),
        ToolParam(
            name="glob",
            type="string",
            description="Only search files whose name matches this glob (e.g. '*.ts').",
            required=False,
        ),
        ToolParam(
            name="case_insensitive",
            type="boolean",
            description="Ignore case when matching.",
            required=False,
            default=False,
        ),
        ToolParam(
            name="max_results",
            type="integer",
            description=f"Maximum matching lines (default {_DEFAULT_MAX_RESULTS}).",
            required=False,
            default=_DEFAULT_MAX_RESULTS,
        ),
    ),
)


async def _ripgrep(
    pattern: str, root: Path, glob_filter: str | None, ignore_case: bool, limit: int,
) -> list[str] | None:
    """Matches via ``rg --json``, or None when rg is unavailable or fails."""
    rg = shutil.which("rg")
    if rg is None:
        return None

    cmd = [rg, "--json", "--max-count", str(limit)]
    if ignore_case:
        cmd.append("-i")
    if glob_filter:
        cmd += ["--glob", glob_filter]
    cmd += ["--", pattern, str(root)]

    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.DEVNULL,
        )
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=_RG_TIMEOUT)
    except (TimeoutError, OSError):
        return None
    # rg exits 1 for "no matches" and 2 for errors (bad regex etc.)
    if proc.returncode not in (0, 1):
        return None

    matches: list[str] = []
    for line in stdout.decode("utf-8", errors="replace").splitlines():
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            continue
        if event.get("type") != "match":
            continue
        data = event.get("data", {})
        text = data.get("lines", {}).get("text", "").rstrip("\n")
        matches.append(f"{data.get('path', {}).get('text', '')}:{data.get('line_number', 0)}: {text}")
        if len(matches) >= limit:
            break
    return matches


def _looks_binary(path: Path) -> bool:
    try:
        with path.open("rb") as f:
            return b"\x00" in f.read(8192)
    except OSError:
        return True


def _python_search(
    regex: re.Pattern[str], root: Path, glob_filter: str | None, limit: int,
) -> list[str]:
    if root.is_file():
        files = [root]
    else:
        files = sorted(
            p for p in root.rglob(glob_filter or "*")
            if p.is_file() and not IGNORED_DIRS.intersection(p.relative_to(root).parts)
        )

    matches: list[str] = []
    for path in files:
        if _looks_binary(path):
            continue
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            continue
        for lineno, line in enumerate(text.splitlines(), start=1):
            if regex.search(line):
                matches.append(f"{path}:{lineno}: {line.rstrip()}")
                if len(matches) >= limit:
                    return matches
    return matches


class GrepTool(BaseTool):
    def __init__(self, *, use_ripgrep: bool = True) -> None:
        self._use_ripgrep = use_ripgrep

    @property
    def definition(self) -> ToolDef:
        return _DEFINITION

    async def execute(self, args: dict[str, Any], ctx: ToolContext) -> ToolResult:
        pattern = args.get("pattern") or ""
        if not pattern:
            return self._error("pattern is required.")
        ignore_case = bool(args.get("case_insensitive") or args.get("-i"))
        try:
            regex = re.compile(pattern, re.IGNORECASE if ignore_case else 0)
        except re.error as exc:
            return self._error(f"Invalid regex pattern: {exc}")

        root = self._resolve(args["path"], ctx) if args.get("path") else ctx.cwd
        if not root.exists():
            return self._error(f"Search path does not exist: {root}")
        glob_filter = args.get("glob") or args.get("include")
        try:
            limit = max(1, int(args.get("max_results", _DEFAULT_MAX_RESULTS)))
        except (TypeError, ValueError):
            limit = _DEFAULT_MAX_RESULTS

        matches = None
        if self._use_ripgrep:
            matches = await _ripgrep(pattern, root, glob_filter, ignore_case, limit)
        if matches is None:
            matches = await asyncio.to_thread(_python_search, regex, root, glob_filter, limit)

        if not matches:
            return self._ok(f"No matches for '{pattern}' in {root}", count=0)
        content = "\n".join(matches)
        if len(matches) >= limit:
            content += f"\n[Stopped after {limit} matches]"
        return self._ok(content, count=len(matches))
