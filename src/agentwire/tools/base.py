"""Base tool class with shared logic."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from agentwire.types.tools import ErrorKind, ToolContext, ToolDef, ToolResult


class BaseTool(ABC):
    """Base class for all local tools."""

    @property
    @abstractmethod
    def definition(self) -> ToolDef:
        ...

    @abstractmethod
    async def execute(self, args: dict[str, Any], ctx: ToolContext) -> ToolResult:
        ...

    def _error(
        self, msg: str, *, code: str = "invalid_input", kind: ErrorKind = ErrorKind.RECOVERABLE,
        **data: Any,
    ) -> ToolResult:
        return ToolResult.fail(msg, code=code, kind=kind, **data)

    def _ok(self, content: str, display: str | None = None, **data: Any) -> ToolResult:
        return ToolResult.ok(content, display=display, **data)

    @staticmethod
    def _resolve(raw_path: str, ctx: ToolContext) -> Path:
        path = Path(raw_path).expanduser()
        if not path.is_absolute():
            path = ctx.cwd / path
        return path
