"""Metrics recording — counters, histograms, with no-op fallback."""

from __future__ import annotations

from typing import Any

try:
    from opentelemetry import metrics

    _HAS_OTEL = True
except ImportError:
    _HAS_OTEL = False

# Lazily-created instruments
_meter: Any = None
_token_counter: Any = None
_tool_call_counter: Any = None
_tool_duration_histogram: Any = None
_rpc_call_counter: Any = None
_turn_latency_histogram: Any = None


def _ensure_instruments() -> None:
    """Create meter and instruments on first use."""
    global _meter, _token_counter, _tool_call_counter, _tool_duration_histogram
    global _rpc_call_counter, _turn_latency_histogram

    if not _HAS_OTEL or _meter is not None:
        return

    _meter = metrics.get_meter("agentwire")
    _token_counter = _meter.create_counter(
        "agentwire.tokens",
        description="Total tokens consumed",
        unit="tokens",
    )
    _tool_call_counter = _meter.create_counter(
        "agentwire.tool_calls",
        description="Total tool calls executed",
    )
    _tool_duration_histogram = _meter.create_histogram(
        "agentwire.tool_duration",
        description="Tool execution time",
        unit="ms",
    )
    _rpc_call_counter = _meter.create_counter(
        "agentwire.rpc_calls",
        description="Requests sent to the stdio tool provider",
    )
    _turn_latency_histogram = _meter.create_histogram(
        "agentwire.turn_latency",
        description="Wall-clock time of one streamed turn",
        unit="ms",
    )


def record_tokens(input_tokens: int = 0, output_tokens: int = 0, *, provider: str = "") -> None:
    """Record token usage."""
    if not _HAS_OTEL:
        return
    _ensure_instruments()
    _token_counter.add(input_tokens, {"direction": "input", "provider": provider})
    _token_counter.add(output_tokens, {"direction": "output", "provider": provider})


def record_tool_call(
    tool_name: str, *, is_error: bool = False, duration_ms: float = 0.0, remote: bool = False,
) -> None:
    """Record a tool call execution."""
    if not _HAS_OTEL:
        return
    _ensure_instruments()
    attrs = {"tool": tool_name, "error": str(is_error).lower(), "remote": str(remote).lower()}
    _tool_call_counter.add(1, attrs)
    _tool_duration_histogram.record(duration_ms, attrs)


def record_rpc_call(method: str, *, outcome: str = "ok", duration_ms: float = 0.0) -> None:
    if not _HAS_OTEL:
        return
    _ensure_instruments()
    _rpc_call_counter.add(1, {"method": method, "outcome": outcome})


def record_turn_latency(latency_ms: float, *, provider: str = "") -> None:
    if not _HAS_OTEL:
        return
    _ensure_instruments()
    _turn_latency_histogram.record(latency_ms, {"provider": provider})


def reset_instruments() -> None:
    """Reset module-level instruments — useful for test isolation."""
    global _meter, _token_counter, _tool_call_counter, _tool_duration_histogram
    global _rpc_call_counter, _turn_latency_histogram
    _meter = None
    _token_counter = None
    _tool_call_counter = None
    _tool_duration_histogram = None
    _rpc_call_counter = None
    _turn_latency_histogram = None
