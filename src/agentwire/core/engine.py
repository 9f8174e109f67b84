"""AppContext: owns every long-lived component and its lifecycle."""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Any

from agentwire.audit.logger import AuditLogger
from agentwire.client.transport import GatewayClient, Transport
from agentwire.context.manager import ContextManager
from agentwire.core.interaction import InteractionBroker
from agentwire.core.loop import ConversationLoop
from agentwire.core.router import ToolRouter
from agentwire.errors import ConnectTimeout, ProviderNotFound
from agentwire.rpc.client import StdioRpcClient
from agentwire.tasks.registry import TaskRegistry
from agentwire.telemetry import HttpTelemetrySink, TelemetryQueue
from agentwire.tools.hooks import install_default_hooks
from agentwire.tools.registry import ToolRegistry
from agentwire.types.config import AppConfig
from agentwire.types.messages import ChatMessage, Message, Result
from agentwire.types.tools import ToolContext

logger = logging.getLogger(__name__)


class AppContext:
    """The object graph behind a CLI session or an SDK call.

    Usage::

        async with AppContext(config) as app:
            loop = app.new_loop()
            async for msg in loop.run("Fix the bug"):
                ...

    Nothing is started until ``start()`` (or ``async with``); ``aclose()``
    stops components in reverse order of start.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        transport: Transport | None = None,
        rpc: StdioRpcClient | None = None,
        telemetry: TelemetryQueue | None = None,
        conversation_id: str | None = None,
    ) -> None:
        self.config = config or AppConfig()
        self.conversation_id = conversation_id or uuid.uuid4().hex[:12]
        self._stack = AsyncExitStack()
        self._started = False
        self._ended = False

        audit_cfg = self.config.audit
        self.audit = AuditLogger(
            self.conversation_id,
            enabled=audit_cfg.enabled,
            log_tool_args=audit_cfg.log_tool_args,
            audit_dir=audit_cfg.audit_dir,
        )

        tel_cfg = self.config.telemetry
        if telemetry is None:
            sink = HttpTelemetrySink(tel_cfg.url, api_key=tel_cfg.api_key) if tel_cfg.url else None
            telemetry = TelemetryQueue(
                sink, batch_size=tel_cfg.batch_size, flush_interval=tel_cfg.flush_interval,
            )
        self.telemetry = telemetry

        self.tasks = TaskRegistry()
        self.interaction = InteractionBroker() if self.config.interactive else None
        self.tool_context = ToolContext(
            cwd=Path(self.config.cwd),
            conversation_id=self.conversation_id,
            skip_permissions=self.config.skip_permissions,
            interaction=self.interaction,
            tasks=self.tasks,
            audit=self.audit,
        )

        self._full_registry = ToolRegistry(
            audit=self.audit, telemetry=self.telemetry, context=self.tool_context,
        )
        self._full_registry.register_defaults()
        self.read_tracker = install_default_hooks(
            self._full_registry.hooks, read_before_write=self.config.read_before_write,
        )
        self.registry = (
            self._full_registry.filter(self.config.tools)
            if self.config.tools is not None
            else self._full_registry
        )
        self.context = ContextManager(
            self.config.budget,
            server_policy=self.config.server_context,
            resolve_name=self._full_registry.canonical_name,
        )

        if rpc is None and self.config.rpc.enabled:
            rpc = StdioRpcClient(self.config.rpc)
        self.rpc = rpc
        self.router = ToolRouter(self.registry, self.rpc)

        self._owns_transport = transport is None
        self.transport: Transport = transport or GatewayClient(self.config.gateway)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @classmethod
    async def create(cls, config: AppConfig | None = None, **kwargs: Any) -> AppContext:
        app = cls(config, **kwargs)
        await app.start()
        return app

    async def start(self) -> None:
        """Validate configuration, start background services, connect the provider.

        Raises ``AliasConfigError`` for a broken alias table. A missing or
        unresponsive tool provider only disables remote tools.
        """
        if self._started:
            return
        self._full_registry.validate_aliases()

        stack = self._stack
        stack.callback(self.audit.close)
        stack.callback(self.context.close)
        if self.interaction is not None:
            stack.push_async_callback(self.interaction.aclose)
        if self._owns_transport and isinstance(self.transport, GatewayClient):
            stack.push_async_callback(self.transport.aclose)
        stack.push_async_callback(self.telemetry.aclose)

        self.tasks.start()
        stack.push_async_callback(self.tasks.close)

        if self.rpc is not None:
            stack.push_async_callback(self.rpc.disconnect)
            try:
                await self.rpc.connect()
            except (ProviderNotFound, ConnectTimeout) as exc:
                self.router.disable_remote(str(exc))

        self.audit.log_conversation_start(self.config.gateway.provider, self.config.gateway.model)
        self._started = True

    def end_conversation(self, result: Result | None = None) -> None:
        """Write the closing audit record once."""
        if self._ended or not self._started:
            return
        self._ended = True
        if result is None:
            self.audit.log_conversation_end()
        else:
            self.audit.log_conversation_end(
                turns=result.turns, tool_calls=result.tool_calls, stop_reason=result.stop_reason,
            )

    async def aclose(self) -> None:
        self.end_conversation()
        self._started = False
        await self._stack.aclose()

    async def __aenter__(self) -> AppContext:
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def new_loop(
        self,
        *,
        conversation_id: str | None = None,
        history: list[ChatMessage] | None = None,
    ) -> ConversationLoop:
        return ConversationLoop(
            transport=self.transport,
            router=self.router,
            context=self.context,
            config=self.config,
            tool_context=self.tool_context,
            local_tools=self.registry.get_definitions(),
            conversation_id=conversation_id or self.conversation_id,
            history=history,
        )


async def run(
    prompt: str,
    *,
    config: AppConfig | None = None,
    cwd: str | None = None,
    provider: str | None = None,
    model: str | None = None,
    gateway_url: str | None = None,
    tools: list[str] | None = None,
    transport: Transport | None = None,
    rpc: StdioRpcClient | None = None,
) -> AsyncIterator[Message]:
    """Run one prompt to completion.

    This is the primary SDK entry point.

    Args:
        prompt: The user's instruction.
        config: A fully resolved config. When omitted one is built from
            ``.env``, ``AGENTWIRE_*`` variables and ``config.toml``.
        cwd: Working directory for tools.
        provider: Provider name ("anthropic", "gemini", "openai").
        model: Model ID. If None, the gateway picks the provider default.
        gateway_url: Base URL of the gateway.
        tools: Local tool names to enable. Defaults to all built-in tools.
        transport: Injected transport for testing.
        rpc: Injected stdio client for testing.
    """
    if config is None:
        from agentwire.core.config import build_app_config

        gateway = {"provider": provider, "model": model, "url": gateway_url}
        config = build_app_config(cwd, overrides={"gateway": gateway}, tools=tools)

    result: Result | None = None
    async with AppContext(config, transport=transport, rpc=rpc) as app:
        loop = app.new_loop()
        async for msg in loop.run(prompt):
            if isinstance(msg, Result):
                result = msg
            yield msg
        app.end_conversation(result)
