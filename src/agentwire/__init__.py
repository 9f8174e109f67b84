"""agentwire — tool orchestration and multi-provider streaming for terminal agents.

Usage:
    import agentwire

    async for msg in agentwire.run("Fix the bug"):
        match msg:
            case agentwire.TextMessage(text=t):
                print(t, end="")
            case agentwire.Result(text=t):
                print(f"Done: {t}")
"""

__version__ = "0.1.0"

from agentwire.core.engine import AppContext, run
from agentwire.types.config import AppConfig, ContextBudget, GatewayConfig, LoopConfig, RpcConfig
from agentwire.types.messages import (
    ChatMessage,
    LimitExceeded,
    Message,
    Result,
    SystemEvent,
    TextMessage,
    ToolOutcome,
    ToolUse,
)
from agentwire.types.tools import ToolContext, ToolDef, ToolParam, ToolResult

__all__ = [
    # Core API
    "AppContext",
    "run",
    # Message types
    "ChatMessage",
    "LimitExceeded",
    "Message",
    "Result",
    "SystemEvent",
    "TextMessage",
    "ToolOutcome",
    "ToolUse",
    # Configuration
    "AppConfig",
    "ContextBudget",
    "GatewayConfig",
    "LoopConfig",
    "RpcConfig",
    # Tool types
    "ToolContext",
    "ToolDef",
    "ToolParam",
    "ToolResult",
]
