"""Conversation history and loop output message types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class ChatMessage:
    """One history entry. ``content`` is text or a list of tagged blocks."""

    role: str  # "user" | "assistant"
    content: str | list[dict[str, Any]]

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatMessage:
        return cls(role=data["role"], content=data.get("content", ""))

    @property
    def blocks(self) -> list[dict[str, Any]]:
        if isinstance(self.content, str):
            return [{"type": "text", "text": self.content}] if self.content else []
        return self.content


def text_block(text: str) -> dict[str, Any]:
    return {"type": "text", "text": text}


def tool_use_block(tool_use_id: str, name: str, args: dict[str, Any]) -> dict[str, Any]:
    return {"type": "tool_use", "id": tool_use_id, "name": name, "input": args}


def tool_result_block(tool_use_id: str, content: str, is_error: bool = False) -> dict[str, Any]:
    block: dict[str, Any] = {
        "type": "tool_result",
        "tool_use_id": tool_use_id,
        "content": content,
    }
    if is_error:
        block["is_error"] = True
    return block


# ---------------------------------------------------------------------------
# Messages yielded by ConversationLoop.run()
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TextMessage:
    """Streaming text chunk from the model."""

    text: str
    is_partial: bool = True


@dataclass(frozen=True, slots=True)
class ToolUse:
    """Model requests a tool call."""

    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ToolOutcome:
    """Result of executing a tool, local or remote."""

    tool_use_id: str
    name: str
    content: str
    is_error: bool = False
    error_code: str | None = None
    elapsed_ms: float | None = None
    display: str | None = None


@dataclass(frozen=True, slots=True)
class LimitExceeded:
    """A safety cap stopped the loop."""

    reason: str
    tool_calls: int
    loop_depth: int


@dataclass(frozen=True, slots=True)
class SystemEvent:
    """Lifecycle event (turn start, remote tools unavailable, etc.)."""

    type: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Result:
    """Final result when the conversation loop completes."""

    text: str
    conversation_id: str
    turns: int = 0
    tool_calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: str = "end_turn"
    error: str | None = None
    error_kind: str | None = None  # "network" | "internal"

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


Message = TextMessage | ToolUse | ToolOutcome | LimitExceeded | SystemEvent | Result
