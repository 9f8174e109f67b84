"""StdioRpcClient — the tool provider as an MCP server over stdio.

Transport, framing and request correlation come from the ``mcp`` SDK
(``stdio_client`` + ``ClientSession``). Both are anyio contexts that must
be entered and exited from the same task, so a background runner task owns
them for the lifetime of one connection while callers talk to the session.
Each call is raced against a per-connection ``lost`` event so that an
unexpected exit or a ``disconnect()`` fails every outstanding call with
``ConnectionClosed``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections.abc import Awaitable
from datetime import timedelta
from pathlib import Path
from typing import Any, TypeVar

import anyio
import httpx
from mcp import ClientSession, McpError, StdioServerParameters, types
from mcp.client.stdio import stdio_client
from pydantic import ValidationError

from agentwire import __version__
from agentwire.errors import (
    ConnectionClosed,
    ConnectTimeout,
    ProviderNotFound,
    RpcError,
    RpcTimeout,
)
from agentwire.observability.metrics import record_rpc_call
from agentwire.rpc.discovery import discover_provider_path, launch_command
from agentwire.types.config import RpcConfig
from agentwire.types.tools import ToolDef

logger = logging.getLogger(__name__)

CLIENT_INFO = types.Implementation(name="agentwire", version=__version__)

T = TypeVar("T")


class StdioRpcClient:
    """Client for a tool provider speaking MCP over stdin/stdout."""

    def __init__(self, config: RpcConfig | None = None) -> None:
        self._config = config or RpcConfig()
        self._session: ClientSession | None = None
        self._runner: asyncio.Task[None] | None = None
        self._starting: asyncio.Future[None] | None = None
        self._lost = asyncio.Event()
        self._close_reason: ConnectionClosed | None = None
        self._in_flight: set[asyncio.Task[Any]] = set()
        self._connected = False
        self._tools_cache: list[dict[str, Any]] | None = None
        self._server_info: dict[str, Any] = {}

    # -- Context manager support ------------------------------------------

    async def __aenter__(self) -> StdioRpcClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.disconnect()

    # -- Properties -------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self._connected and not self._lost.is_set()

    @property
    def pending_count(self) -> int:
        return len(self._in_flight)

    @property
    def server_info(self) -> dict[str, Any]:
        return self._server_info

    # -- Lifecycle --------------------------------------------------------

    async def connect(self) -> None:
        """Launch the provider and complete the initialize handshake.

        Concurrent callers share one attempt; a connected client returns
        immediately. A missing provider raises ``ProviderNotFound`` before
        anything is spawned.
        """
        if self.connected:
            return
        if self._starting is None or self._starting.done():
            path = discover_provider_path(self._config.provider_path)
            if not path.is_file():
                raise ProviderNotFound(path)
            self._starting = asyncio.get_running_loop().create_future()
            self._lost = asyncio.Event()
            self._close_reason = None
            self._runner = asyncio.create_task(
                self._run(path, self._starting, self._lost, self._runner),
            )
        await asyncio.shield(self._starting)

    async def disconnect(self) -> None:
        """Stop the provider and fail everything still outstanding."""
        runner, self._runner = self._runner, None
        if runner is None:
            return
        self._mark_lost(self._lost, ConnectionClosed("Tool provider disconnected"))
        await runner

    def _mark_lost(self, lost: asyncio.Event, reason: ConnectionClosed) -> None:
        if lost is self._lost and self._close_reason is None:
            self._close_reason = reason
        self._connected = False
        self._tools_cache = None
        lost.set()

    async def _run(
        self,
        path: Path,
        starting: asyncio.Future[None],
        lost: asyncio.Event,
        previous: asyncio.Task[None] | None,
    ) -> None:
        if previous is not None:
            # Leftovers from a provider that exited on its own.
            await previous

        argv = launch_command(path)
        logger.debug("Launching tool provider: %s", " ".join(argv))
        params = StdioServerParameters(
            command=argv[0],
            args=argv[1:],
            env={**os.environ, **self._config.env},
            cwd=path.resolve().parent,
        )
        err_read, err_write = os.pipe()
        errlog = os.fdopen(err_write, "w")
        stderr_task = asyncio.create_task(self._drain_stderr(os.fdopen(err_read, "rb")))
        pump: asyncio.Task[None] | None = None
        try:
            async with stdio_client(params, errlog=errlog) as (read, write):
                errlog.close()
                inbox_send, inbox = anyio.create_memory_object_stream(0)
                pump = asyncio.create_task(self._pump(read, inbox_send, lost))
                async with ClientSession(
                    inbox,
                    write,
                    read_timeout_seconds=timedelta(seconds=self._config.call_timeout),
                    client_info=CLIENT_INFO,
                ) as session:
                    timeout = self._config.handshake_timeout
                    try:
                        with anyio.fail_after(timeout):
                            init = await session.initialize()
                    except TimeoutError:
                        starting.set_exception(ConnectTimeout(timeout))
                        return
                    except McpError as exc:
                        starting.set_exception(RpcError(exc.error.message, exc.error.code))
                        return
                    if lost.is_set():
                        starting.set_exception(self._close_reason_for(lost))
                        return

                    self._session = session
                    self._server_info = init.serverInfo.model_dump(exclude_none=True)
                    self._connected = True
                    starting.set_result(None)
                    logger.info(
                        "Connected to tool provider %s (protocol %s)",
                        self._server_info.get("name", path.name), init.protocolVersion,
                    )
                    await lost.wait()
        except Exception as exc:
            if not starting.done():
                starting.set_exception(exc)
            else:
                logger.warning("Tool provider connection ended with error: %s", exc)
        finally:
            errlog.close()
            if pump is not None:
                pump.cancel()
            stderr_task.cancel()
            if lost is self._lost:
                self._session = None
            self._mark_lost(lost, ConnectionClosed("Tool provider stopped"))
            if not starting.done():
                starting.set_exception(ConnectionClosed("Tool provider stopped during handshake"))

    async def _pump(self, read: Any, inbox: Any, lost: asyncio.Event) -> None:
        """Forward provider messages to the session; EOF marks the connection lost."""
        async with inbox:
            try:
                async for item in read:
                    if isinstance(item, Exception):
                        logger.debug("Ignoring unreadable provider output: %s", item)
                        continue
                    await inbox.send(item)
            except (anyio.ClosedResourceError, anyio.BrokenResourceError) as exc:
                # The transport is being torn down.
                logger.debug("Provider stream closed: %r", exc)
            if not lost.is_set():
                logger.warning("Tool provider exited unexpectedly")
                self._mark_lost(lost, ConnectionClosed("Tool provider exited"))

    async def _drain_stderr(self, pipe: Any) -> None:
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        transport, _ = await loop.connect_read_pipe(
            lambda: asyncio.StreamReaderProtocol(reader), pipe,
        )
        try:
            while line := await reader.readline():
                logger.debug("[tool-provider] %s", line.decode("utf-8", errors="replace").rstrip())
        finally:
            transport.close()

    def _close_reason_for(self, lost: asyncio.Event) -> ConnectionClosed:
        if lost is self._lost and self._close_reason is not None:
            return self._close_reason
        return ConnectionClosed("Tool provider connection lost")

    # -- Requests ---------------------------------------------------------

    async def _invoke(self, method: str, request: Awaitable[T], timeout: float) -> T:
        """Run one session request, mapping SDK failures onto our errors."""
        lost = self._lost
        call = asyncio.ensure_future(request)
        self._in_flight.add(call)
        waiter = asyncio.ensure_future(lost.wait())
        start = asyncio.get_running_loop().time()
        outcome = "ok"
        try:
            try:
                await asyncio.wait((call, waiter), return_when=asyncio.FIRST_COMPLETED)
            finally:
                waiter.cancel()
                if not call.done():
                    call.cancel()
                    await asyncio.wait((call,))

            if not call.cancelled() and call.exception() is None:
                return call.result()
            if lost.is_set():
                outcome = "closed"
                raise self._close_reason_for(lost)

            exc = call.exception()
            if isinstance(exc, McpError):
                if exc.error.code == httpx.codes.REQUEST_TIMEOUT:
                    outcome = "timeout"
                    logger.warning("RPC %s timed out after %gs", method, timeout)
                    raise RpcTimeout(method, timeout) from exc
                outcome = "error"
                raise RpcError(exc.error.message, exc.error.code, exc.error.data) from exc
            outcome = "error"
            raise exc
        finally:
            self._in_flight.discard(call)
            elapsed_ms = (asyncio.get_running_loop().time() - start) * 1000
            record_rpc_call(method, outcome=outcome, duration_ms=elapsed_ms)

    def _require_session(self) -> ClientSession:
        if not self.connected or self._session is None:
            raise ConnectionClosed("Tool provider is not connected")
        return self._session

    async def call(self, method: str, params: dict[str, Any] | None = None, *,
                   timeout: float | None = None) -> dict[str, Any]:
        """Send any MCP client request and return the raw result object.

        Raises ``RpcTimeout`` after ``timeout`` seconds (default from config),
        ``RpcError`` when the provider answers with an error, and
        ``ConnectionClosed`` if the provider goes away first.
        """
        session = self._require_session()
        try:
            request = types.ClientRequest.model_validate(
                {"method": method, "params": params or None},
            )
        except ValidationError as exc:
            raise RpcError(f"Unsupported request '{method}': {exc}", -32601) from exc
        timeout = self._config.call_timeout if timeout is None else timeout
        result = await self._invoke(
            method,
            session.send_request(
                request, types.Result, request_read_timeout_seconds=timedelta(seconds=timeout),
            ),
            timeout,
        )
        return result.model_dump(mode="json", by_alias=True, exclude_none=True)

    # -- Tools ------------------------------------------------------------

    async def list_tools(self) -> list[dict[str, Any]]:
        """Tools advertised by the provider, cached for the connection lifetime."""
        if self._tools_cache is not None:
            return self._tools_cache
        await self.connect()
        result = await self._invoke(
            "tools/list", self._require_session().list_tools(), self._config.call_timeout,
        )
        self._tools_cache = [
            tool.model_dump(mode="json", by_alias=True, exclude_none=True)
            for tool in result.tools
        ]
        return self._tools_cache

    def invalidate_cache(self) -> None:
        self._tools_cache = None

    async def get_tool_defs(self) -> list[ToolDef]:
        return [ToolDef.from_schema(t) for t in await self.list_tools()]

    async def has_tool(self, name: str) -> bool:
        return any(t.get("name") == name for t in await self.list_tools())

    async def call_tool(self, name: str, args: dict[str, Any], *,
                        timeout: float | None = None) -> str:
        """Invoke a remote tool and return its text output."""
        await self.connect()
        timeout = self._config.call_timeout if timeout is None else timeout
        result = await self._invoke(
            "tools/call",
            self._require_session().call_tool(
                name, args, read_timeout_seconds=timedelta(seconds=timeout),
            ),
            timeout,
        )

        texts = [item.text for item in result.content if isinstance(item, types.TextContent)]
        if result.isError:
            raise RpcError("\n".join(texts) or f"Tool '{name}' failed")
        if texts:
            return "\n".join(texts)
        return json.dumps(result.model_dump(mode="json", by_alias=True, exclude_none=True))
