"""Parse the unified SSE stream into typed ``StreamEvent``s.

Accepts the provider-shaped vocabulary produced by the gateway
(``content_block_*``, ``message_*``) plus the looser events some backends
emit (``pause_for_tools``, ``tool_result``, ``error``, ``ping``).
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from agentwire.types.events import (
    Done,
    PauseForTools,
    StreamError,
    StreamEvent,
    TextDelta,
    ToolResultEvent,
    ToolStart,
    Usage,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _ToolBuffer:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    partial_json: str = ""

    def assemble(self) -> ToolStart:
        args = self.input
        if self.partial_json:
            try:
                parsed = json.loads(self.partial_json)
            except json.JSONDecodeError:
                logger.warning("Tool %s (%s) sent malformed input JSON", self.name, self.id)
                parsed = {}
            args = parsed if isinstance(parsed, dict) else {}
        return ToolStart(id=self.id, name=self.name, input=args)


def _int_or_none(value: Any) -> int | None:
    return value if isinstance(value, int) and not isinstance(value, bool) else None


class StreamParser:
    """Stateful: one instance per HTTP response."""

    def __init__(self) -> None:
        self._tools: dict[int, _ToolBuffer] = {}
        self._stop_reason: str | None = None
        self._done = False

    @property
    def done(self) -> bool:
        return self._done

    def feed_line(self, line: str) -> list[StreamEvent]:
        """One line of the response body. Non-``data:`` lines are ignored."""
        line = line.strip()
        if not line.startswith("data:"):
            return []
        data = line[5:].strip()
        if data == "[DONE]":
            return self._finish_once()
        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed stream line: %s", data[:200])
            return []
        if not isinstance(payload, dict):
            return []
        return self.handle(payload)

    def handle(self, event: dict[str, Any]) -> list[StreamEvent]:
        match event.get("type"):
            case "message_start":
                usage = (event.get("message") or {}).get("usage") or {}
                if usage.get("input_tokens") or usage.get("output_tokens"):
                    return [self._usage(usage)]
                return []

            case "content_block_start":
                block = event.get("content_block") or {}
                if block.get("type") == "tool_use":
                    self._tools[event.get("index", 0)] = _ToolBuffer(
                        id=str(block.get("id", "")),
                        name=str(block.get("name", "")),
                        input=dict(block.get("input") or {}),
                    )
                elif block.get("text"):
                    return [TextDelta(block["text"])]
                return []

            case "content_block_delta":
                delta = event.get("delta") or {}
                match delta.get("type"):
                    case "text_delta" if delta.get("text"):
                        return [TextDelta(delta["text"])]
                    case "input_json_delta":
                        buf = self._tools.get(event.get("index", 0))
                        if buf is not None:
                            buf.partial_json += delta.get("partial_json", "")
                return []

            case "content_block_stop":
                buf = self._tools.pop(event.get("index", 0), None)
                return [buf.assemble()] if buf is not None else []

            case "message_delta":
                stop = (event.get("delta") or {}).get("stop_reason")
                if stop:
                    self._stop_reason = stop
                usage = event.get("usage")
                return [self._usage(usage)] if usage else []

            case "message_stop" | "done":
                return self._finish_once()

            case "text" | "text_delta" | "chunk":
                text = event.get("text") or event.get("content")
                return [TextDelta(text)] if isinstance(text, str) and text else []

            case "tool_start" | "tool_use":
                return [ToolStart(
                    id=str(event.get("tool_id") or event.get("id") or ""),
                    name=str(event.get("tool_name") or event.get("name") or ""),
                    input=dict(event.get("input") or {}),
                )]

            case "pause_for_tools":
                calls = tuple(
                    ToolStart(
                        id=str(t.get("id", "")),
                        name=str(t.get("name", "")),
                        input=dict(t.get("input") or {}),
                    )
                    for t in event.get("pending_tools") or []
                    if isinstance(t, dict)
                )
                content = event.get("assistant_content")
                return [PauseForTools(
                    calls=calls,
                    assistant_content=content if isinstance(content, list) else None,
                    tool_call_count=_int_or_none(event.get("tool_call_count")),
                    loop_depth=_int_or_none(event.get("loop_depth")),
                )]

            case "tool_result" | "tool_error":
                result = event.get("result")
                if isinstance(result, str):
                    try:
                        result = json.loads(result)
                    except json.JSONDecodeError:
                        pass
                return [ToolResultEvent(
                    id=str(event.get("tool_id") or event.get("id") or ""),
                    name=str(event.get("tool_name") or event.get("name") or ""),
                    content=result,
                    is_error=event.get("type") == "tool_error" or bool(event.get("is_error")),
                )]

            case "usage":
                return [self._usage(event.get("usage") or event)]

            case "error":
                err = event.get("error")
                if isinstance(err, dict):
                    return [StreamError(
                        str(err.get("message") or "Unknown error"), err.get("type"),
                    )]
                return [StreamError(str(err or event.get("message") or "Unknown error"))]

            case "ping":
                return []

            case other:
                logger.debug("Ignoring stream event %r", other)
                return []

    def finish(self) -> list[StreamEvent]:
        """End of body. Flushes unterminated tool blocks, then ``Done``."""
        events: list[StreamEvent] = []
        for index in sorted(self._tools):
            events.append(self._tools[index].assemble())
        self._tools.clear()
        events.extend(self._finish_once())
        return events

    def _finish_once(self) -> list[StreamEvent]:
        if self._done:
            return []
        self._done = True
        return [Done(self._stop_reason)]

    @staticmethod
    def _usage(usage: dict[str, Any]) -> Usage:
        return Usage(
            input_tokens=int(usage.get("input_tokens") or 0),
            output_tokens=int(usage.get("output_tokens") or 0),
        )
