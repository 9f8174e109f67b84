"""Tool definition, call and result types."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from agentwire.errors import InvalidTransition

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ToolParam:
    """A parameter for a tool."""

    name: str
    type: str  # "string", "integer", "number", "boolean", "array", "object"
    description: str
    required: bool = True
    enum: tuple[str, ...] | None = None
    default: Any = None
    items: dict[str, Any] | None = None  # For array types: JSON Schema for items

    def to_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": self.type, "description": self.description}
        if self.enum:
            schema["enum"] = list(self.enum)
        if self.items is not None:
            schema["items"] = self.items
        return schema


@dataclass(frozen=True, slots=True)
class ToolDef:
    """Definition of a tool exposed to the model.

    Remote tools keep the provider's JSON schema verbatim in
    ``input_schema`` so nothing is lost converting back and forth.
    """

    name: str
    description: str
    parameters: tuple[ToolParam, ...] = ()
    input_schema: dict[str, Any] | None = None
    remote: bool = False

    def to_schema(self) -> dict[str, Any]:
        """Wire form: ``{name, description, parameters: {type, properties, required}}``."""
        if self.input_schema is not None:
            params = dict(self.input_schema)
            params.setdefault("type", "object")
            params.setdefault("properties", {})
        else:
            params = {
                "type": "object",
                "properties": {p.name: p.to_schema() for p in self.parameters},
                "required": [p.name for p in self.parameters if p.required],
            }
        return {"name": self.name, "description": self.description, "parameters": params}

    @classmethod
    def from_schema(cls, schema: dict[str, Any], *, remote: bool = True) -> ToolDef:
        params = schema.get("inputSchema") or schema.get("input_schema") or schema.get("parameters")
        return cls(
            name=schema["name"],
            description=schema.get("description", ""),
            input_schema=params or {"type": "object", "properties": {}},
            remote=remote,
        )


def dedupe_schemas(schemas: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Drop tools whose name repeats an earlier one, ignoring case. First wins."""
    seen: set[str] = set()
    out: list[dict[str, Any]] = []
    for schema in schemas:
        key = str(schema.get("name", "")).lower()
        if key in seen:
            logger.debug("Dropping duplicate tool definition %r", schema.get("name"))
            continue
        seen.add(key)
        out.append(schema)
    return out


class ErrorKind(Enum):
    """Whether the model can reasonably retry after a tool failure."""

    RECOVERABLE = "recoverable"
    FATAL = "fatal"


@dataclass(slots=True)
class ToolResult:
    """Outcome of one tool invocation.

    Open-world: anything beyond the fixed fields lives in ``data`` and is
    flattened into the serialized JSON sent upstream.
    """

    success: bool
    content: str = ""
    error: str | None = None
    error_kind: ErrorKind | None = None
    error_code: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    display: str | None = None  # Optional rich display for the UI

    @classmethod
    def ok(cls, content: str = "", *, display: str | None = None, **data: Any) -> ToolResult:
        return cls(success=True, content=content, data=data, display=display)

    @classmethod
    def fail(
        cls,
        error: str,
        *,
        code: str,
        kind: ErrorKind = ErrorKind.RECOVERABLE,
        **data: Any,
    ) -> ToolResult:
        return cls(success=False, error=error, error_kind=kind, error_code=code, data=data)

    @property
    def is_error(self) -> bool:
        return not self.success

    @property
    def text(self) -> str:
        """Human-readable body: the error message on failure, else content."""
        if not self.success:
            return self.error or self.content
        return self.content

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success}
        if self.content:
            out["content"] = self.content
        if self.error is not None:
            out["error"] = self.error
        if self.error_kind is not None:
            out["error_kind"] = self.error_kind.value
        if self.error_code is not None:
            out["error_code"] = self.error_code
        for key, value in self.data.items():
            out.setdefault(key, value)
        return out

    def to_content(self) -> str:
        """The JSON string placed in the upstream ``tool_result`` block."""
        return json.dumps(self.to_dict(), default=str)


@dataclass(slots=True)
class ToolContext:
    """Context passed to tool execute methods."""

    cwd: Path
    conversation_id: str = ""
    skip_permissions: bool = False
    interaction: Any | None = None  # InteractionBroker
    tasks: Any | None = None  # TaskRegistry
    audit: Any | None = None  # AuditLogger
    tool_use_id: str = ""
    extra: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class Tool(Protocol):
    """Protocol that all local tools must implement."""

    @property
    def definition(self) -> ToolDef:
        """Return the tool definition for the model."""
        ...

    async def execute(self, args: dict[str, Any], ctx: ToolContext) -> ToolResult:
        """Execute the tool with the given arguments and context."""
        ...


class ToolCallStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


_TRANSITIONS: dict[ToolCallStatus, frozenset[ToolCallStatus]] = {
    ToolCallStatus.PENDING: frozenset({ToolCallStatus.RUNNING, ToolCallStatus.ERROR}),
    ToolCallStatus.RUNNING: frozenset({ToolCallStatus.COMPLETED, ToolCallStatus.ERROR}),
    ToolCallStatus.COMPLETED: frozenset(),
    ToolCallStatus.ERROR: frozenset(),
}


@dataclass(slots=True)
class ToolCall:
    """A tool invocation requested by the model, keyed by ``id``."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    status: ToolCallStatus = ToolCallStatus.PENDING
    result: ToolResult | None = None

    def _move(self, target: ToolCallStatus) -> None:
        if target not in _TRANSITIONS[self.status]:
            raise InvalidTransition(
                f"Tool call {self.id}: {self.status.value} -> {target.value}"
            )
        self.status = target

    def start(self) -> None:
        self._move(ToolCallStatus.RUNNING)

    def finish(self, result: ToolResult) -> None:
        self._move(ToolCallStatus.COMPLETED if result.success else ToolCallStatus.ERROR)
        self.result = result

    @property
    def done(self) -> bool:
        return self.status in (ToolCallStatus.COMPLETED, ToolCallStatus.ERROR)
