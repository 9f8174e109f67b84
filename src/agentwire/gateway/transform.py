"""Stream normalizers: provider SSE in, unified event vocabulary out.

The unified vocabulary is Anthropic's streaming format (``message_start``,
``content_block_start/delta/stop``, ``message_delta``, ``message_stop``),
so the Anthropic stream passes through untouched and the other providers
are rewritten incrementally, chunk by chunk, without buffering the body.
"""

from __future__ import annotations

import itertools
import json
import logging
import time
from collections.abc import Callable
from typing import Any, Protocol

from agentwire.gateway.providers import Provider
from agentwire.gateway.sse import SSEDecoder, encode_event

logger = logging.getLogger(__name__)


class StreamNormalizer(Protocol):
    def start(self) -> list[bytes]: ...

    def feed(self, chunk: bytes) -> list[bytes]: ...

    def finish(self) -> list[bytes]: ...


class PassthroughNormalizer:
    """Byte-for-byte relay."""

    def __init__(self, model: str, clock: Callable[[], float] = time.time) -> None:
        self.model = model

    def start(self) -> list[bytes]:
        return []

    def feed(self, chunk: bytes) -> list[bytes]:
        return [chunk]

    def finish(self) -> list[bytes]:
        return []


class _UnifiedEmitter:
    """Shared bookkeeping for the rewriting normalizers."""

    def __init__(self, model: str, clock: Callable[[], float] = time.time) -> None:
        self.model = model
        self._clock = clock
        self._decoder = SSEDecoder()
        self._index = 0
        self._input_tokens = 0
        self._output_tokens = 0
        self._saw_tool_use = False
        self._stop_reason: str | None = None
        self._finished = False

    def start(self) -> list[bytes]:
        return [encode_event({
            "type": "message_start",
            "message": {
                "id": f"msg_{int(self._clock() * 1000)}",
                "type": "message",
                "role": "assistant",
                "model": self.model,
                "content": [],
                "usage": {"input_tokens": 0, "output_tokens": 0},
            },
        })]

    def feed(self, chunk: bytes) -> list[bytes]:
        out: list[bytes] = []
        for data in self._decoder.feed(chunk):
            out.extend(self._dispatch(data))
        return out

    def finish(self) -> list[bytes]:
        out: list[bytes] = []
        for data in self._decoder.flush():
            out.extend(self._dispatch(data))
        out.extend(self._close_blocks())
        if not self._finished:
            out.append(self._message_delta(self._stop_reason or self._default_stop()))
        out.append(encode_event({"type": "message_stop"}))
        return out

    def _dispatch(self, data: str) -> list[bytes]:
        if data.strip() == "[DONE]":
            return []
        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed upstream event: %s", data[:200])
            return []
        if not isinstance(payload, dict):
            return []
        return self._handle(payload)

    def _handle(self, payload: dict[str, Any]) -> list[bytes]:
        raise NotImplementedError

    def _close_blocks(self) -> list[bytes]:
        return []

    def _default_stop(self) -> str:
        return "tool_use" if self._saw_tool_use else "end_turn"

    def _message_delta(self, stop_reason: str) -> bytes:
        self._finished = True
        return encode_event({
            "type": "message_delta",
            "delta": {"stop_reason": stop_reason, "stop_sequence": None},
            "usage": {"input_tokens": self._input_tokens, "output_tokens": self._output_tokens},
        })

    def _block_start(self, block: dict[str, Any]) -> bytes:
        return encode_event({
            "type": "content_block_start", "index": self._index, "content_block": block,
        })

    def _block_delta(self, delta: dict[str, Any]) -> bytes:
        return encode_event({"type": "content_block_delta", "index": self._index, "delta": delta})

    def _block_stop(self) -> bytes:
        event = encode_event({"type": "content_block_stop", "index": self._index})
        self._index += 1
        return event


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------


class GeminiNormalizer(_UnifiedEmitter):
    """Gemini sends whole parts per chunk: each text part becomes its own
    start/delta/stop triple and each function call a complete tool_use block.
    """

    _STOP_REASONS = {"MAX_TOKENS": "max_tokens", "SAFETY": "refusal", "RECITATION": "refusal"}

    def __init__(self, model: str, clock: Callable[[], float] = time.time) -> None:
        super().__init__(model, clock)
        self._call_counter = itertools.count()

    def _handle(self, payload: dict[str, Any]) -> list[bytes]:
        out: list[bytes] = []
        usage = payload.get("usageMetadata") or {}
        self._input_tokens = usage.get("promptTokenCount", self._input_tokens)
        self._output_tokens = usage.get("candidatesTokenCount", self._output_tokens)

        candidates = payload.get("candidates") or []
        if not candidates:
            return out
        candidate = candidates[0]

        for part in (candidate.get("content") or {}).get("parts") or []:
            if part.get("text"):
                out.append(self._block_start({"type": "text", "text": ""}))
                out.append(self._block_delta({"type": "text_delta", "text": part["text"]}))
                out.append(self._block_stop())
            elif "functionCall" in part:
                call = part["functionCall"]
                name = call.get("name", "")
                tool_id = f"{name}_{int(self._clock() * 1000)}_{next(self._call_counter)}"
                self._saw_tool_use = True
                out.append(self._block_start({
                    "type": "tool_use", "id": tool_id, "name": name, "input": call.get("args") or {},
                }))
                out.append(self._block_stop())

        finish = candidate.get("finishReason")
        if finish and not self._finished:
            stop = self._STOP_REASONS.get(finish) or self._default_stop()
            self._stop_reason = stop
            out.append(self._message_delta(stop))
        return out


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------


class OpenAINormalizer(_UnifiedEmitter):
    """Chat-completions deltas: text streams into one open block; tool-call
    argument fragments are re-emitted per index as ``input_json_delta``.
    """

    _STOP_REASONS = {"tool_calls": "tool_use", "length": "max_tokens", "stop": "end_turn"}

    def __init__(self, model: str, clock: Callable[[], float] = time.time) -> None:
        super().__init__(model, clock)
        self._open: str | None = None  # "text" or "tool:<index>"

    def _close_blocks(self) -> list[bytes]:
        if self._open is None:
            return []
        self._open = None
        return [self._block_stop()]

    def _handle(self, payload: dict[str, Any]) -> list[bytes]:
        out: list[bytes] = []
        usage = payload.get("usage") or {}
        if usage:
            self._input_tokens = usage.get("prompt_tokens", self._input_tokens)
            self._output_tokens = usage.get("completion_tokens", self._output_tokens)

        for choice in payload.get("choices") or []:
            delta = choice.get("delta") or {}
            if delta.get("content"):
                if self._open != "text":
                    out.extend(self._close_blocks())
                    out.append(self._block_start({"type": "text", "text": ""}))
                    self._open = "text"
                out.append(self._block_delta({"type": "text_delta", "text": delta["content"]}))

            for call in delta.get("tool_calls") or []:
                key = f"tool:{call.get('index', 0)}"
                fn = call.get("function") or {}
                if self._open != key:
                    out.extend(self._close_blocks())
                    self._saw_tool_use = True
                    out.append(self._block_start({
                        "type": "tool_use",
                        "id": call.get("id") or f"call_{int(self._clock() * 1000)}_{call.get('index', 0)}",
                        "name": fn.get("name", ""),
                        "input": {},
                    }))
                    self._open = key
                if fn.get("arguments"):
                    out.append(self._block_delta({
                        "type": "input_json_delta", "partial_json": fn["arguments"],
                    }))

            if choice.get("finish_reason"):
                out.extend(self._close_blocks())
                self._stop_reason = self._STOP_REASONS.get(choice["finish_reason"], "end_turn")
        return out


NORMALIZERS: dict[Provider, type[PassthroughNormalizer] | type[GeminiNormalizer]
                  | type[OpenAINormalizer]] = {
    Provider.ANTHROPIC: PassthroughNormalizer,
    Provider.GEMINI: GeminiNormalizer,
    Provider.OPENAI: OpenAINormalizer,
}

_missing = set(Provider) - NORMALIZERS.keys()
if _missing:
    raise RuntimeError(f"No stream normalizer for providers: {sorted(p.value for p in _missing)}")


def normalizer_for(provider: Provider, model: str) -> StreamNormalizer:
    return NORMALIZERS[provider](model)
