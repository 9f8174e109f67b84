"""Pre/post tool-execution hooks.

Pre-hooks run before a local tool executes: each may veto the call or hand
back modified parameters for the hooks after it and for the tool itself.
Post-hooks run on the ``ToolResult`` and may return an amended one.

Hooks are registered per canonical tool name, or under ``"*"`` for every
tool. Pre-hooks run global first, then tool-specific; post-hooks run
tool-specific first, then global.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from agentwire.types.tools import ToolResult

logger = logging.getLogger(__name__)

ALL_TOOLS = "*"


@dataclass(slots=True)
class HookContext:
    """What a hook sees about the call being made."""

    tool_name: str
    params: dict[str, Any]
    cwd: Path
    conversation_id: str | None = None


@dataclass(frozen=True, slots=True)
class PreHookResult:
    proceed: bool = True
    params: dict[str, Any] | None = None
    error: str | None = None
    suggestion: str | None = None

    @classmethod
    def deny(cls, error: str, suggestion: str | None = None) -> PreHookResult:
        return cls(proceed=False, error=error, suggestion=suggestion)


PreHook = Callable[[HookContext], Awaitable[PreHookResult | None]]
PostHook = Callable[[HookContext, ToolResult], Awaitable[ToolResult | None]]


@dataclass(slots=True)
class HookRegistry:
    """Registers and runs tool hooks.

    Usage::

        hooks = HookRegistry()

        async def no_env_files(ctx):
            if str(ctx.params.get("file_path", "")).endswith(".env"):
                return PreHookResult.deny("Refusing to touch .env files")
            return None

        hooks.register_pre("Write", no_env_files)
    """

    _pre: dict[str, list[PreHook]] = field(default_factory=dict)
    _post: dict[str, list[PostHook]] = field(default_factory=dict)

    def register_pre(self, tool_name: str, hook: PreHook) -> None:
        self._pre.setdefault(tool_name, []).append(hook)

    def register_post(self, tool_name: str, hook: PostHook) -> None:
        self._post.setdefault(tool_name, []).append(hook)

    def __len__(self) -> int:
        return sum(map(len, self._pre.values())) + sum(map(len, self._post.values()))

    async def run_pre(self, ctx: HookContext) -> PreHookResult:
        """Run pre-hooks until one vetoes. The final params are on the result."""
        params = dict(ctx.params)
        for hook in (*self._pre.get(ALL_TOOLS, ()), *self._pre.get(ctx.tool_name, ())):
            outcome = await hook(replace(ctx, params=params))
            if outcome is None:
                continue
            if not outcome.proceed:
                logger.info("Pre-hook vetoed %s: %s", ctx.tool_name, outcome.error)
                return outcome
            if outcome.params is not None:
                params = dict(outcome.params)
        return PreHookResult(params=params)

    async def run_post(self, ctx: HookContext, result: ToolResult) -> ToolResult:
        for hook in (*self._post.get(ctx.tool_name, ()), *self._post.get(ALL_TOOLS, ())):
            amended = await hook(ctx, result)
            if amended is not None:
                result = amended
        return result


# ---------------------------------------------------------------------------
# Read-before-write
# ---------------------------------------------------------------------------


class FileReadTracker:
    """Remembers which files were read recently, by resolved path."""

    def __init__(self, ttl: float = 30.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._reads: dict[Path, float] = {}

    @staticmethod
    def _key(raw_path: str, cwd: Path) -> Path:
        path = Path(raw_path).expanduser()
        if not path.is_absolute():
            path = cwd / path
        return path.resolve()

    def record(self, raw_path: str, cwd: Path) -> None:
        self._reads[self._key(raw_path, cwd)] = self._clock()

    def recently_read(self, raw_path: str, cwd: Path) -> bool:
        stamp = self._reads.get(self._key(raw_path, cwd))
        return stamp is not None and self._clock() - stamp < self.ttl

    def clear(self) -> None:
        self._reads.clear()


def _file_path(params: dict[str, Any]) -> str:
    return str(params.get("file_path") or params.get("path") or "")


def install_read_before_write(hooks: HookRegistry, tracker: FileReadTracker) -> None:
    """Refuse Edit on unread files and Write over existing unread files."""

    async def remember_read(ctx: HookContext, result: ToolResult) -> None:
        if result.success and (raw := _file_path(ctx.params)):
            tracker.record(raw, ctx.cwd)

    async def guard_edit(ctx: HookContext) -> PreHookResult | None:
        raw = _file_path(ctx.params)
        if raw and not tracker.recently_read(raw, ctx.cwd):
            return PreHookResult.deny(
                f'Read-before-write: File "{raw}" must be read before editing',
                "Use the Read tool to view the file contents first",
            )
        return None

    async def guard_write(ctx: HookContext) -> PreHookResult | None:
        raw = _file_path(ctx.params)
        if not raw:
            return None
        exists = FileReadTracker._key(raw, ctx.cwd).exists()
        if exists and not tracker.recently_read(raw, ctx.cwd):
            return PreHookResult.deny(
                f'Read-before-write: Existing file "{raw}" must be read before overwriting',
                "Use the Read tool to view the file contents first",
            )
        return None

    hooks.register_post("Read", remember_read)
    # Writing a file counts as knowing its content.
    hooks.register_post("Write", remember_read)
    hooks.register_post("Edit", remember_read)
    hooks.register_pre("Edit", guard_edit)
    hooks.register_pre("Write", guard_write)


# ---------------------------------------------------------------------------
# Error hints
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ErrorPattern:
    pattern: re.Pattern[str]
    error_type: str  # "recoverable" or "fatal"
    suggestion: str


ERROR_PATTERNS: tuple[ErrorPattern, ...] = (
    ErrorPattern(re.compile(r"not found in "), "recoverable",
                 "Try expanding the search context or check for whitespace differences"),
    ErrorPattern(re.compile(r"File not found: "), "recoverable",
                 "Verify the file path exists. Use Glob to find similar files."),
    ErrorPattern(re.compile(r"(found|appears) \d+ times"), "recoverable",
                 "Add more surrounding context to make the match unique"),
    ErrorPattern(re.compile(r"Permission denied|EACCES"), "fatal",
                 "File permissions prevent this operation"),
    ErrorPattern(re.compile(r"ENOENT|No such file or directory"), "recoverable",
                 "Path does not exist. Create parent directories first."),
)


def analyze_error(error: str) -> ErrorPattern | None:
    for candidate in ERROR_PATTERNS:
        if candidate.pattern.search(error):
            return candidate
    return None


async def add_error_hint(ctx: HookContext, result: ToolResult) -> ToolResult | None:
    """Attach a ``suggestion`` to failures whose message matches a known pattern."""
    if result.success or "suggestion" in result.data:
        return None
    match = analyze_error(result.error or "")
    if match is None:
        return None
    return replace(
        result,
        data={**result.data, "error_type": match.error_type, "suggestion": match.suggestion},
    )


def install_default_hooks(
    hooks: HookRegistry, *, read_before_write: bool = False,
) -> FileReadTracker | None:
    """Error hints always; read-before-write enforcement when asked for."""
    hooks.register_post(ALL_TOOLS, add_error_hint)
    if not read_before_write:
        return None
    tracker = FileReadTracker()
    install_read_before_write(hooks, tracker)
    return tracker
