"""Error taxonomy for agentwire.

Errors raised inside a component are converted to typed results
(``ToolResult`` / ``Result``) at its boundary; only configuration and
programming errors propagate to the caller unchanged.
"""

from __future__ import annotations

from typing import Any


class AgentwireError(Exception):
    """Base class for all agentwire errors."""

    retryable: bool = False


# ---------------------------------------------------------------------------
# Tool provider (stdio RPC)
# ---------------------------------------------------------------------------


class ProviderNotFound(AgentwireError):
    """The tool provider executable does not exist at the resolved path."""

    def __init__(self, path: Any) -> None:
        super().__init__(f"Tool provider not found at {path}")
        self.path = path


class ConnectTimeout(AgentwireError):
    """The initialize handshake did not complete in time."""

    retryable = True

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Tool provider handshake timed out after {timeout:g}s")
        self.timeout = timeout


class RpcTimeout(AgentwireError):
    """A request received no response before its deadline."""

    retryable = True

    def __init__(self, method: str, timeout: float) -> None:
        super().__init__(f"RPC call '{method}' timed out after {timeout:g}s")
        self.method = method
        self.timeout = timeout


class RpcError(AgentwireError):
    """The provider answered with an error object (or ``isError`` content)."""

    def __init__(self, message: str, code: int | None = None, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


class ConnectionClosed(AgentwireError):
    """The provider process went away while requests were outstanding."""


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


class UnknownTool(AgentwireError):
    def __init__(self, name: str, known: list[str]) -> None:
        super().__init__(f"Unknown tool: {name}. Available tools: {', '.join(known)}")
        self.name = name
        self.known = known


class HandlerException(AgentwireError):
    """A local tool handler raised instead of returning a result."""

    def __init__(self, name: str, cause: BaseException) -> None:
        super().__init__(f"Tool '{name}' failed: {cause}")
        self.name = name
        self.cause = cause


class AliasConfigError(AgentwireError):
    """An alias points at a tool that is not registered."""


class InvalidTransition(AgentwireError):
    """A ToolCall status change went backwards or skipped a state."""


# ---------------------------------------------------------------------------
# Gateway / network
# ---------------------------------------------------------------------------


class UpstreamHTTPError(AgentwireError):
    """A non-2xx response from the model provider or the gateway.

    Surfaced verbatim and never retried.
    """

    def __init__(self, status: int, body: str, provider: str | None = None) -> None:
        label = f"{provider} API error" if provider else "Upstream error"
        super().__init__(f"{label}: {status}")
        self.status = status
        self.body = body
        self.provider = provider


class MissingCredentials(AgentwireError):
    def __init__(self, provider: str, env_vars: tuple[str, ...]) -> None:
        super().__init__(
            f"No API key configured for {provider} (set {' or '.join(env_vars)})"
        )
        self.provider = provider
        self.env_vars = env_vars


class UnsupportedProvider(AgentwireError):
    def __init__(self, provider: str) -> None:
        super().__init__(f"Unsupported provider: {provider}")
        self.provider = provider


class TurnTimeout(AgentwireError):
    retryable = True

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Turn did not complete within {timeout:g}s")
        self.timeout = timeout


# ---------------------------------------------------------------------------
# Conversation loop
# ---------------------------------------------------------------------------


class LoopLimitExceeded(AgentwireError):
    def __init__(self, reason: str, *, tool_calls: int, loop_depth: int) -> None:
        super().__init__(reason)
        self.reason = reason
        self.tool_calls = tool_calls
        self.loop_depth = loop_depth


class TurnCancelled(AgentwireError):
    """The in-flight turn was cancelled by the caller."""


class RendezvousClosed(AgentwireError):
    """The interaction channel was closed before an answer arrived."""
