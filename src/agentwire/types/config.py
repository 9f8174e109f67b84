"""Configuration types for agentwire."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_PRESERVE_TOOLS = frozenset(
    {"Grep", "Glob", "Read", "Search", "database_query", "products_find"}
)
DEFAULT_TRUNCATE_INPUT_TOOLS = frozenset({"Write", "Edit", "NotebookEdit"})


@dataclass(frozen=True, slots=True)
class ContextBudget:
    """Size limits applied to the outbound copy of the history."""

    max_tool_input_chars: int = 500
    max_tool_output_chars: int = 30_000
    max_inline_chars: int = 5_000
    preserve_tools: frozenset[str] = DEFAULT_PRESERVE_TOOLS
    truncate_input_tools: frozenset[str] = DEFAULT_TRUNCATE_INPUT_TOOLS
    truncate_input_fields: tuple[str, ...] = ("content", "new_string")
    output_dir: Path | None = None  # None -> scoped temp dir


@dataclass(frozen=True, slots=True)
class ServerContextPolicy:
    """Server-side tool-use clearing policy sent with every request."""

    trigger_input_tokens: int = 150_000
    keep_tool_uses: int = 5
    clear_at_least_tokens: int | None = None
    clear_tool_inputs: bool = True
    # Results of these tools are never cleared server-side.
    exclude_tools: tuple[str, ...] = ("Grep", "Glob", "Read", "database_query", "products_find")
    enabled: bool = True


@dataclass(frozen=True, slots=True)
class RpcConfig:
    """Configuration for the stdio tool provider."""

    provider_path: str | None = None  # Explicit override of discovery
    handshake_timeout: float = 5.0
    call_timeout: float = 60.0
    env: dict[str, str] = field(default_factory=dict)
    enabled: bool = True


@dataclass(frozen=True, slots=True)
class GatewayConfig:
    """Where the conversation loop sends its turns."""

    url: str = "http://127.0.0.1:8787"
    api_key: str | None = None
    provider: str = "anthropic"
    model: str | None = None
    turn_timeout: float = 120.0
    connect_timeout: float = 10.0


@dataclass(frozen=True, slots=True)
class LoopConfig:
    max_tool_calls: int = 1000
    max_loop_depth: int = 500


@dataclass(frozen=True, slots=True)
class TelemetryConfig:
    url: str | None = None
    api_key: str | None = None
    batch_size: int = 20
    flush_interval: float = 5.0


@dataclass(frozen=True, slots=True)
class AuditConfig:
    """Configuration for the tool audit log."""

    enabled: bool = False
    log_tool_args: bool = True
    audit_dir: Path | None = None


@dataclass(slots=True)
class AppConfig:
    """Everything an AppContext needs to start."""

    cwd: Path = field(default_factory=Path.cwd)
    system_prompt: str = ""
    project_context: str | None = None
    skip_permissions: bool = False
    interactive: bool = False
    read_before_write: bool = False  # Refuse Edit/Write on files not Read first
    tools: list[str] | None = None  # None -> all built-in tools
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    rpc: RpcConfig = field(default_factory=RpcConfig)
    loop: LoopConfig = field(default_factory=LoopConfig)
    budget: ContextBudget = field(default_factory=ContextBudget)
    server_context: ServerContextPolicy = field(default_factory=ServerContextPolicy)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    extra: dict[str, Any] = field(default_factory=dict)
