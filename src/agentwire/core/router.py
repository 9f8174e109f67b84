"""ToolRouter — sends each tool call to the local registry or the stdio provider."""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from agentwire.errors import (
    ConnectionClosed,
    ConnectTimeout,
    ProviderNotFound,
    RpcError,
    RpcTimeout,
)
from agentwire.rpc.client import StdioRpcClient
from agentwire.tools.registry import ToolRegistry
from agentwire.types.tools import ErrorKind, ToolCall, ToolContext, ToolDef, ToolResult

logger = logging.getLogger(__name__)


def _remote_result(output: str) -> ToolResult:
    """Structured JSON objects are spread into the result; anything else is text."""
    try:
        parsed = json.loads(output)
    except json.JSONDecodeError:
        return ToolResult.ok(output)
    if isinstance(parsed, dict):
        return ToolResult(success=True, data=parsed)
    return ToolResult.ok(output)


class ToolRouter:
    """Local when the name (or an alias, any case) is registered, remote otherwise."""

    def __init__(self, registry: ToolRegistry, rpc: StdioRpcClient | None = None) -> None:
        self._registry = registry
        self._rpc = rpc
        self._local: frozenset[str] | None = None
        self._remote_disabled: str | None = None

    @property
    def remote_enabled(self) -> bool:
        return self._rpc is not None and self._remote_disabled is None

    @property
    def remote_disabled_reason(self) -> str | None:
        return self._remote_disabled

    def disable_remote(self, reason: str) -> None:
        if self._remote_disabled is None:
            logger.warning("Remote tools disabled: %s", reason)
        self._remote_disabled = reason

    def invalidate(self) -> None:
        """Forget the cached local-name set and the remote tool list."""
        self._local = None
        if self._rpc is not None:
            self._rpc.invalidate_cache()

    def is_local(self, name: str) -> bool:
        if self._local is None:
            self._local = self._registry.lookup_names()
        return name.lower() in self._local

    async def remote_definitions(self) -> list[ToolDef]:
        """Remote tool schemas, or an empty list when the provider is unavailable."""
        if self._rpc is None or not self.remote_enabled:
            return []
        try:
            return await self._rpc.get_tool_defs()
        except (ProviderNotFound, ConnectTimeout) as exc:
            self.disable_remote(str(exc))
        except (RpcError, RpcTimeout, ConnectionClosed) as exc:
            logger.warning("Could not list remote tools: %s", exc)
        return []

    async def dispatch(
        self,
        call: ToolCall,
        ctx: ToolContext,
        *,
        conversation_id: str | None = None,
        batch_id: str | None = None,
        batch_size: int = 1,
    ) -> ToolResult:
        """Execute one call. Never raises for tool-level failures."""
        if self._rpc is None or self.is_local(call.name):
            return await self._registry.execute(
                call.name, call.input, ctx,
                conversation_id=conversation_id, batch_id=batch_id, batch_size=batch_size,
            )

        start = time.monotonic()
        result = await self._call_remote(call.name, call.input)
        self._registry.record(
            call.name, call.input, result, (time.monotonic() - start) * 1000,
            conversation_id=conversation_id, batch_id=batch_id, batch_size=batch_size,
            remote=True,
        )
        return result

    async def _call_remote(self, name: str, args: dict[str, Any]) -> ToolResult:
        assert self._rpc is not None
        if not self.remote_enabled:
            return ToolResult.fail(
                f"Remote tool '{name}' unavailable: {self._remote_disabled}",
                code="provider_not_found", kind=ErrorKind.FATAL,
            )
        try:
            output = await self._rpc.call_tool(name, args)
        except RpcTimeout as exc:
            return ToolResult.fail(str(exc), code="rpc_timeout")
        except RpcError as exc:
            data = {"rpc_code": exc.code} if exc.code is not None else {}
            return ToolResult.fail(exc.message, code="rpc_error", **data)
        except ConnectionClosed as exc:
            return ToolResult.fail(str(exc), code="connection_closed")
        except (ProviderNotFound, ConnectTimeout) as exc:
            self.disable_remote(str(exc))
            return ToolResult.fail(str(exc), code="provider_not_found", kind=ErrorKind.FATAL)
        return _remote_result(output)
