"""ToolRegistry — registry and dispatcher for local tools."""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from agentwire.audit.logger import AuditLogger
from agentwire.errors import AliasConfigError, HandlerException, UnknownTool
from agentwire.observability.metrics import record_tool_call
from agentwire.telemetry import TelemetryQueue, ToolExecutionRecord
from agentwire.tools.aliases import TOOL_ALIASES
from agentwire.tools.base import BaseTool
from agentwire.tools.hooks import HookContext, HookRegistry
from agentwire.types.tools import ErrorKind, ToolContext, ToolDef, ToolResult

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Registers local tools and dispatches execution requests.

    Usage::

        registry = ToolRegistry()
        registry.register_defaults()
        registry.validate_aliases()
        result = await registry.execute("Read", {"file_path": "foo.py"}, ctx)
    """

    def __init__(
        self,
        *,
        aliases: Mapping[str, str] | None = None,
        audit: AuditLogger | None = None,
        telemetry: TelemetryQueue | None = None,
        context: ToolContext | None = None,
        hooks: HookRegistry | None = None,
    ) -> None:
        self._tools: dict[str, BaseTool] = {}
        self._aliases: dict[str, str] = dict(TOOL_ALIASES if aliases is None else aliases)
        self._audit = audit
        self._telemetry = telemetry
        self._context = context or ToolContext(cwd=Path.cwd())
        self.hooks = hooks if hooks is not None else HookRegistry()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, tool: BaseTool) -> None:
        """Add a tool to the registry under its definition name."""
        self._tools[tool.definition.name] = tool

    def register_defaults(self) -> None:
        """Create and register the built-in tools."""
        from agentwire.tools.ask import AskUserTool
        from agentwire.tools.bash import BashTool
        from agentwire.tools.edit import EditTool
        from agentwire.tools.fetch import FetchTool
        from agentwire.tools.glob import GlobTool
        from agentwire.tools.grep import GrepTool
        from agentwire.tools.ls import LSTool
        from agentwire.tools.read import ReadTool
        from agentwire.tools.tasks import TaskStatusTool
        from agentwire.tools.todo import TodoWriteTool
        from agentwire.tools.write import WriteTool

        for tool in (
            ReadTool(),
            WriteTool(),
            EditTool(),
            BashTool(),
            GlobTool(),
            GrepTool(),
            LSTool(),
            TodoWriteTool(),
            AskUserTool(),
            TaskStatusTool(),
            FetchTool(),
        ):
            self.register(tool)

    def validate_aliases(self) -> None:
        """Raise ``AliasConfigError`` if any alias targets an unregistered tool."""
        dangling = sorted(
            f"{alias} -> {target}"
            for alias, target in self._aliases.items()
            if target not in self._tools
        )
        if dangling:
            raise AliasConfigError(f"Aliases point at unknown tools: {', '.join(dangling)}")

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def canonical_name(self, name: str) -> str | None:
        """Exact name, then exact alias, then either ignoring case."""
        if name in self._tools:
            return name
        if name in self._aliases:
            return self._aliases[name]
        lowered = name.lower()
        for tool_name in self._tools:
            if tool_name.lower() == lowered:
                return tool_name
        for alias, target in self._aliases.items():
            if alias.lower() == lowered:
                return target
        return None

    def get(self, name: str) -> BaseTool | None:
        canonical = self.canonical_name(name)
        return self._tools.get(canonical) if canonical else None

    def names(self) -> list[str]:
        return list(self._tools)

    def lookup_names(self) -> frozenset[str]:
        """Every name that resolves locally, lowercased (tools and aliases)."""
        names = {n.lower() for n in self._tools}
        names.update(a.lower() for a, t in self._aliases.items() if t in self._tools)
        return frozenset(names)

    def get_definitions(self) -> list[ToolDef]:
        """Return all registered tool definitions (for the request schema)."""
        return [tool.definition for tool in self._tools.values()]

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def execute(
        self,
        name: str,
        params: dict[str, Any],
        ctx: ToolContext | None = None,
        *,
        conversation_id: str | None = None,
        batch_id: str | None = None,
        batch_size: int = 1,
    ) -> ToolResult:
        """Dispatch a tool call by name. Always returns a ``ToolResult``.

        Pre-hooks may veto the call (``hook_denied``) or rewrite its params;
        post-hooks may amend the result. A hook that raises is reported like
        a tool that raised.
        """
        ctx = ctx or self._context
        start = time.monotonic()
        tool = self.get(name)

        if tool is None:
            exc = UnknownTool(name, sorted(self._tools))
            result = ToolResult.fail(str(exc), code="unknown_tool", kind=ErrorKind.RECOVERABLE)
        else:
            hook_ctx = HookContext(
                tool_name=tool.definition.name,
                params=params if isinstance(params, dict) else {},
                cwd=ctx.cwd,
                conversation_id=conversation_id or ctx.conversation_id,
            )
            try:
                pre = await self.hooks.run_pre(hook_ctx)
                if pre.proceed:
                    hook_ctx.params = pre.params if pre.params is not None else hook_ctx.params
                    result = await tool.execute(hook_ctx.params, ctx)
                else:
                    extra = {"suggestion": pre.suggestion} if pre.suggestion else {}
                    result = ToolResult.fail(
                        pre.error or f"{hook_ctx.tool_name} blocked by a hook",
                        code="hook_denied", kind=ErrorKind.RECOVERABLE, **extra,
                    )
                result = await self.hooks.run_post(hook_ctx, result)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Tool %s raised", name)
                failure = HandlerException(name, exc)
                result = ToolResult.fail(
                    str(failure), code="handler_exception", kind=ErrorKind.RECOVERABLE,
                )

        self.record(
            tool.definition.name if tool else name,
            params,
            result,
            (time.monotonic() - start) * 1000,
            conversation_id=conversation_id or ctx.conversation_id,
            batch_id=batch_id,
            batch_size=batch_size,
        )
        return result

    def record(
        self,
        name: str,
        params: dict[str, Any] | None,
        result: ToolResult,
        duration_ms: float,
        *,
        conversation_id: str | None = None,
        batch_id: str | None = None,
        batch_size: int = 1,
        remote: bool = False,
    ) -> None:
        """Emit the audit and telemetry records for one finished call."""
        try:
            if self._audit is not None:
                self._audit.log_tool_execution(
                    name,
                    params,
                    success=result.success,
                    duration_ms=duration_ms,
                    error=result.error,
                    batch_id=batch_id,
                    batch_size=batch_size,
                    remote=remote,
                )
            if self._telemetry is not None:
                self._telemetry.record(ToolExecutionRecord(
                    tool_name=name,
                    execution_time_ms=round(duration_ms, 2),
                    result_status="success" if result.success else "error",
                    error_message=result.error,
                    error_code=result.error_code,
                    was_parallel=batch_size > 1,
                    batch_id=batch_id,
                    batch_size=batch_size,
                    remote=remote,
                    conversation_id=conversation_id,
                ))
            record_tool_call(
                name, is_error=not result.success, duration_ms=duration_ms, remote=remote,
            )
        except Exception:  # noqa: BLE001
            logger.warning("Failed to record execution of %s", name, exc_info=True)

    # ------------------------------------------------------------------
    # Filtering
    # ------------------------------------------------------------------

    def filter(self, names: list[str]) -> ToolRegistry:
        """Return a new registry containing only the named tools.

        Aliases whose target is filtered out are dropped with it.
        """
        filtered = ToolRegistry(
            aliases={},
            audit=self._audit,
            telemetry=self._telemetry,
            context=self._context,
            hooks=self.hooks,
        )
        for name in names:
            tool = self.get(name)
            if tool is not None:
                filtered.register(tool)
        filtered._aliases = {a: t for a, t in self._aliases.items() if t in filtered._tools}
        return filtered

    # ------------------------------------------------------------------
    # Dunder helpers
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.canonical_name(name) is not None

    def __repr__(self) -> str:
        return f"ToolRegistry(tools={sorted(self._tools)})"
