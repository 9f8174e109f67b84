"""Normalized stream events consumed by the conversation loop."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class TextDelta:
    text: str


@dataclass(frozen=True, slots=True)
class ToolStart:
    """The model asked for a tool call; ``input`` is fully assembled."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ToolResultEvent:
    """A tool the server executed on its own, reported for display."""

    id: str
    name: str
    content: Any = None
    is_error: bool = False


@dataclass(frozen=True, slots=True)
class PauseForTools:
    """Server-side request to run local tools before the turn continues."""

    calls: tuple[ToolStart, ...]
    assistant_content: list[dict[str, Any]] | None = None
    tool_call_count: int | None = None
    loop_depth: int | None = None


@dataclass(frozen=True, slots=True)
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True, slots=True)
class StreamError:
    message: str
    kind: str | None = None


@dataclass(frozen=True, slots=True)
class Done:
    stop_reason: str | None = None


StreamEvent = (
    TextDelta | ToolStart | ToolResultEvent | PauseForTools | Usage | StreamError | Done
)
