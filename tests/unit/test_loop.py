"""Tests for the conversation loop: batching, dedup, limits, cancellation, failures."""

from __future__ import annotations

import asyncio
import json
import time
from pathlib import Path
from typing import Any

import httpx
import pytest

from agentwire.core.engine import AppContext
from agentwire.core.loop import ConversationLoop, LoopState
from agentwire.errors import LoopLimitExceeded, UpstreamHTTPError
from agentwire.tools.base import BaseTool
from agentwire.types.config import GatewayConfig, LoopConfig, RpcConfig
from agentwire.types.events import (
    Done,
    PauseForTools,
    StreamError,
    TextDelta,
    ToolResultEvent,
    ToolStart,
    Usage,
)
from agentwire.types.messages import (
    LimitExceeded,
    Message,
    Result,
    SystemEvent,
    TextMessage,
    ToolOutcome,
    ToolUse,
)
from agentwire.types.tools import ToolContext, ToolDef, ToolParam, ToolResult
from tests.conftest import FakeTransport, make_config


class _NapTool(BaseTool):
    """Sleeps for ``ms`` milliseconds, then answers."""

    _DEFINITION = ToolDef(
        name="Nap",
        description="Sleep for a while",
        parameters=(ToolParam(name="ms", type="integer", description="Milliseconds"),),
    )

    def __init__(self) -> None:
        self.started: list[str] = []

    @property
    def definition(self) -> ToolDef:
        return self._DEFINITION

    async def execute(self, args: dict[str, Any], ctx: ToolContext) -> ToolResult:
        self.started.append(ctx.tool_use_id)
        await asyncio.sleep(args["ms"] / 1000)
        return ToolResult.ok(f"napped {args['ms']}")


async def _collect(loop: ConversationLoop, prompt: str = "go") -> list[Message]:
    return [msg async for msg in loop.run(prompt)]


def _result(messages: list[Message]) -> Result:
    assert isinstance(messages[-1], Result)
    return messages[-1]


def _of(messages: list[Message], kind: type) -> list[Any]:
    return [m for m in messages if isinstance(m, kind)]


class TestBasicFlow:
    @pytest.mark.asyncio
    async def test_text_only_turn(self, tmp_path: Path):
        transport = FakeTransport([[
            TextDelta("Hello"), TextDelta(" there"), Usage(12, 3), Done("end_turn"),
        ]])
        async with AppContext(make_config(tmp_path), transport=transport) as app:
            loop = app.new_loop()
            messages = await _collect(loop, "hi")

        assert messages[0] == SystemEvent("turn_start", {"conversation_id": loop.conversation_id})
        assert _of(messages, TextMessage) == [
            TextMessage("Hello"), TextMessage(" there"), TextMessage("Hello there", is_partial=False),
        ]
        result = _result(messages)
        assert result.text == "Hello there"
        assert result.stop_reason == "end_turn"
        assert result.turns == 1
        assert result.tool_calls == 0
        assert (result.input_tokens, result.output_tokens) == (12, 3)
        assert [m.to_dict() for m in loop.history] == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": [{"type": "text", "text": "Hello there"}]},
        ]
        assert loop.state is LoopState.DONE
        assert transport.closed == 1

    @pytest.mark.asyncio
    async def test_tool_round_trip_and_history(self, tmp_path: Path):
        (tmp_path / "a.txt").write_text("alpha\n")
        transport = FakeTransport([
            [TextDelta("Reading."), ToolStart("tu_1", "Read", {"file_path": "a.txt"}), Done("tool_use")],
            [TextDelta("It says alpha."), Done("end_turn")],
        ])
        async with AppContext(make_config(tmp_path), transport=transport) as app:
            loop = app.new_loop()
            messages = await _collect(loop, "read a.txt")

        (use,) = _of(messages, ToolUse)
        assert use == ToolUse("tu_1", "Read", {"file_path": "a.txt"})
        (outcome,) = _of(messages, ToolOutcome)
        assert outcome.tool_use_id == "tu_1"
        assert not outcome.is_error
        assert "alpha" in outcome.content
        assert messages.index(use) < messages.index(outcome)

        result = _result(messages)
        assert result.turns == 2
        assert result.tool_calls == 1
        assert result.text == "It says alpha."

        history = [m.to_dict() for m in loop.history]
        assert history[1] == {"role": "assistant", "content": [
            {"type": "text", "text": "Reading."},
            {"type": "tool_use", "id": "tu_1", "name": "Read", "input": {"file_path": "a.txt"}},
        ]}
        (block,) = history[2]["content"]
        assert block["type"] == "tool_result"
        assert block["tool_use_id"] == "tu_1"
        assert json.loads(block["content"])["success"] is True
        assert history[3]["role"] == "assistant"

        second = transport.payloads[1]
        assert second["history"][:3] == history[:3]
        assert second["tool_call_count"] == 1
        assert second["loop_depth"] == 1

    @pytest.mark.asyncio
    async def test_first_payload_contents(self, tmp_path: Path):
        transport = FakeTransport([[Done("end_turn")]])
        config = make_config(tmp_path, system_prompt="Be brief.", project_context="# Notes")
        async with AppContext(config, transport=transport) as app:
            await _collect(app.new_loop(), "hi")

        (payload,) = transport.payloads
        assert payload["message"] == "hi"
        assert payload["history"] == [{"role": "user", "content": "hi"}]
        assert payload["provider"] == "anthropic"
        assert "model" not in payload
        assert payload["system_prompt"] == "Be brief."
        assert payload["project_context"] == "# Notes"
        assert payload["working_directory"] == str(tmp_path)
        assert payload["tool_call_count"] == 0
        assert payload["loop_depth"] == 0
        assert payload["context_management"]["edits"][0]["type"] == "clear_tool_uses_20250919"
        names = [t["name"] for t in payload["local_tools"]]
        assert "Read" in names and "Bash" in names
        assert len(names) == len(set(names))

    @pytest.mark.asyncio
    async def test_failed_tool_reported_inline(self, tmp_path: Path):
        transport = FakeTransport([
            [ToolStart("tu_1", "Read", {"file_path": "missing.txt"}), Done("tool_use")],
            [TextDelta("No such file."), Done("end_turn")],
        ])
        async with AppContext(make_config(tmp_path), transport=transport) as app:
            loop = app.new_loop()
            messages = await _collect(loop)

        (outcome,) = _of(messages, ToolOutcome)
        assert outcome.is_error
        assert outcome.error_code == "invalid_input"
        assert _result(messages).stop_reason == "end_turn"
        (block,) = loop.history[2].content
        assert block["is_error"] is True
        assert json.loads(block["content"])["error_code"] == "invalid_input"

    @pytest.mark.asyncio
    async def test_server_side_tool_results_passed_through(self, tmp_path: Path):
        transport = FakeTransport([[
            ToolResultEvent("srv_1", "web_search", "3 hits"),
            TextDelta("Found it."),
            Done("end_turn"),
        ]])
        async with AppContext(make_config(tmp_path), transport=transport) as app:
            loop = app.new_loop()
            messages = await _collect(loop)

        assert _of(messages, ToolOutcome) == [ToolOutcome("srv_1", "web_search", "3 hits")]
        assert _of(messages, ToolUse) == []
        assert _result(messages).tool_calls == 0
        assert len(loop.history) == 2


class TestBatching:
    @pytest.mark.asyncio
    async def test_mixed_batch_runs_concurrently_in_order(self, tmp_path: Path, rpc_config: RpcConfig):
        nap = _NapTool()
        transport = FakeTransport([
            [
                ToolStart("c1", "Nap", {"ms": 10}),
                ToolStart("c2", "sleep", {"ms": 300}),
                ToolStart("c3", "sleep", {"ms": 250}),
                Done("tool_use"),
            ],
            [TextDelta("All done."), Done("end_turn")],
        ])
        async with AppContext(make_config(tmp_path, rpc=rpc_config), transport=transport) as app:
            app.registry.register(nap)
            loop = app.new_loop()
            started = 0.0
            elapsed = float("inf")
            messages: list[Message] = []
            async for msg in loop.run("nap"):
                if isinstance(msg, ToolUse) and not started:
                    started = time.monotonic()
                messages.append(msg)
                if isinstance(msg, ToolOutcome) and msg.tool_use_id == "c3":
                    elapsed = time.monotonic() - started

        assert elapsed < 0.5
        assert nap.started == ["c1"]
        outcomes = _of(messages, ToolOutcome)
        assert [o.tool_use_id for o in outcomes] == ["c1", "c2", "c3"]
        assert [o.content for o in outcomes] == ["napped 10", "slept 300", "slept 250"]
        assert _result(messages).tool_calls == 3

        results = loop.history[2].content
        assert [b["tool_use_id"] for b in results] == ["c1", "c2", "c3"]
        advertised = {t["name"] for t in transport.payloads[0]["local_tools"]}
        assert {"Nap", "echo", "sleep"} <= advertised

    @pytest.mark.asyncio
    async def test_duplicate_ids_in_one_round_run_once(self, tmp_path: Path):
        nap = _NapTool()
        transport = FakeTransport([
            [
                ToolStart("dup", "Nap", {"ms": 1}),
                ToolStart("dup", "Nap", {"ms": 1}),
                Done("tool_use"),
            ],
            [Done("end_turn")],
        ])
        async with AppContext(make_config(tmp_path), transport=transport) as app:
            app.registry.register(nap)
            loop = app.new_loop()
            messages = await _collect(loop)

        assert nap.started == ["dup"]
        assert len(_of(messages, ToolUse)) == 1
        assert _result(messages).tool_calls == 1

    @pytest.mark.asyncio
    async def test_ids_already_applied_are_ignored(self, tmp_path: Path):
        nap = _NapTool()
        transport = FakeTransport([
            [ToolStart("once", "Nap", {"ms": 1}), Done("tool_use")],
            [ToolStart("once", "Nap", {"ms": 1}), TextDelta("ok"), Done("end_turn")],
        ])
        async with AppContext(make_config(tmp_path), transport=transport) as app:
            app.registry.register(nap)
            loop = app.new_loop()
            messages = await _collect(loop)

        assert nap.started == ["once"]
        result = _result(messages)
        assert result.tool_calls == 1
        assert result.turns == 2
        assert result.text == "ok"

    @pytest.mark.asyncio
    async def test_repeated_tool_result_rendered_once(self, tmp_path: Path):
        transport = FakeTransport([[
            ToolResultEvent("srv_1", "web_search", "3 hits"),
            ToolResultEvent("srv_1", "web_search", "3 hits"),
            TextDelta("ok"),
            Done("end_turn"),
        ]])
        async with AppContext(make_config(tmp_path), transport=transport) as app:
            messages = await _collect(app.new_loop())

        assert _of(messages, ToolOutcome) == [ToolOutcome("srv_1", "web_search", "3 hits")]
        assert _result(messages).text == "ok"

    @pytest.mark.asyncio
    async def test_tool_result_for_executed_call_not_rendered_again(self, tmp_path: Path):
        transport = FakeTransport([
            [ToolStart("tu_1", "LS", {}), Done("tool_use")],
            [ToolResultEvent("tu_1", "LS", "late copy"), Done("end_turn")],
        ])
        async with AppContext(make_config(tmp_path), transport=transport) as app:
            messages = await _collect(app.new_loop())

        (outcome,) = _of(messages, ToolOutcome)
        assert outcome.tool_use_id == "tu_1"
        assert outcome.content != "late copy"

    @pytest.mark.asyncio
    async def test_pause_for_tools_keeps_assistant_content(self, tmp_path: Path):
        transport = FakeTransport([
            [
                TextDelta("Checking."),
                PauseForTools(
                    calls=(ToolStart("a", "LS", {}), ToolStart("b", "Glob", {"pattern": "*"})),
                    assistant_content=[
                        {"type": "text", "text": "Checking."},
                        {"type": "tool_use", "id": "a", "name": "LS", "input": {}},
                        {"type": "tool_use", "id": "a", "name": "LS", "input": {}},
                        {"type": "tool_use", "id": "srv", "name": "web", "input": {}},
                    ],
                ),
                TextDelta("never streamed"),
            ],
            [Done("end_turn")],
        ])
        async with AppContext(make_config(tmp_path), transport=transport) as app:
            loop = app.new_loop()
            messages = await _collect(loop)

        assert [u.id for u in _of(messages, ToolUse)] == ["a", "b"]
        assert "never streamed" not in [m.text for m in _of(messages, TextMessage)]
        assert loop.history[1].content == [
            {"type": "text", "text": "Checking."},
            {"type": "tool_use", "id": "a", "name": "LS", "input": {}},
            {"type": "tool_use", "id": "b", "name": "Glob", "input": {"pattern": "*"}},
        ]
        assert transport.closed == 2


class TestLimits:
    @pytest.mark.asyncio
    async def test_tool_call_limit(self, tmp_path: Path):
        transport = FakeTransport([[
            ToolStart("a", "LS", {}), ToolStart("b", "LS", {}), ToolStart("c", "LS", {}),
            Done("tool_use"),
        ]])
        config = make_config(tmp_path, loop=LoopConfig(max_tool_calls=2))
        async with AppContext(config, transport=transport) as app:
            messages = await _collect(app.new_loop())

        (limit,) = _of(messages, LimitExceeded)
        assert limit.reason == "Tool call limit reached (2)"
        assert _of(messages, ToolUse) == []
        result = _result(messages)
        assert result.stop_reason == "limit_exceeded"
        assert result.tool_calls == 0

    @pytest.mark.asyncio
    async def test_loop_depth_limit(self, tmp_path: Path):
        transport = FakeTransport([
            [ToolStart("a", "LS", {}), Done("tool_use")],
            [ToolStart("b", "LS", {}), Done("tool_use")],
        ])
        config = make_config(tmp_path, loop=LoopConfig(max_loop_depth=1))
        async with AppContext(config, transport=transport) as app:
            messages = await _collect(app.new_loop())

        (limit,) = _of(messages, LimitExceeded)
        assert limit.loop_depth == 1
        assert limit.tool_calls == 1
        assert [u.id for u in _of(messages, ToolUse)] == ["a"]
        assert _result(messages).tool_calls == 1

    @pytest.mark.asyncio
    async def test_check_limits_raises_with_counters(self, tmp_path: Path):
        config = make_config(tmp_path, loop=LoopConfig(max_tool_calls=3))
        async with AppContext(config, transport=FakeTransport([])) as app:
            loop = app.new_loop()
            loop._check_limits(3)
            with pytest.raises(LoopLimitExceeded) as info:
                loop._check_limits(4)

        assert info.value.reason == "Tool call limit reached (3)"
        assert str(info.value) == info.value.reason
        assert (info.value.tool_calls, info.value.loop_depth) == (0, 0)

    @pytest.mark.asyncio
    async def test_server_counters_adopted_on_pause(self, tmp_path: Path):
        transport = FakeTransport([[
            PauseForTools(calls=(ToolStart("a", "LS", {}),), tool_call_count=1000, loop_depth=7),
        ]])
        async with AppContext(make_config(tmp_path), transport=transport) as app:
            messages = await _collect(app.new_loop())

        (limit,) = _of(messages, LimitExceeded)
        assert limit.tool_calls == 1000
        assert limit.loop_depth == 7
        assert _result(messages).tool_calls == 1000

    @pytest.mark.asyncio
    async def test_counters_reset_per_run(self, tmp_path: Path):
        transport = FakeTransport([
            [ToolStart("a", "LS", {}), Done("tool_use")],
            [Done("end_turn")],
            [ToolStart("b", "LS", {}), Done("tool_use")],
            [Done("end_turn")],
        ])
        config = make_config(tmp_path, loop=LoopConfig(max_tool_calls=1))
        async with AppContext(config, transport=transport) as app:
            loop = app.new_loop()
            first = _result(await _collect(loop, "one"))
            second = _result(await _collect(loop, "two"))

        assert first.stop_reason == second.stop_reason == "end_turn"
        assert second.tool_calls == 1
        assert transport.payloads[2]["tool_call_count"] == 0


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_while_streaming(self, tmp_path: Path):
        transport = FakeTransport([
            [TextDelta("thinking"), 5.0, Done("end_turn")],
            [TextDelta("fresh"), Done("end_turn")],
        ])
        async with AppContext(make_config(tmp_path), transport=transport) as app:
            loop = app.new_loop()
            asyncio.get_running_loop().call_later(0.1, loop.cancel)
            started = time.monotonic()
            messages = await _collect(loop, "slow")
            assert time.monotonic() - started < 2

            result = _result(messages)
            assert result.stop_reason == "cancelled"
            assert loop.history == []
            assert loop.state is LoopState.CANCELLED
            assert transport.closed == 1

            again = _result(await _collect(loop, "retry"))
            assert again.stop_reason == "end_turn"
            assert again.text == "fresh"
            assert [m.content for m in loop.history if m.role == "user"] == ["retry"]

    @pytest.mark.asyncio
    async def test_cancel_during_tool_batch(self, tmp_path: Path):
        nap = _NapTool()
        transport = FakeTransport([
            [ToolStart("slow", "Nap", {"ms": 5000}), Done("tool_use")],
        ])
        async with AppContext(make_config(tmp_path), transport=transport) as app:
            app.registry.register(nap)
            loop = app.new_loop(history=[])
            asyncio.get_running_loop().call_later(0.2, loop.cancel)
            started = time.monotonic()
            messages = await _collect(loop)

        assert time.monotonic() - started < 2
        assert nap.started == ["slow"]
        assert [u.id for u in _of(messages, ToolUse)] == ["slow"]
        assert _of(messages, ToolOutcome) == []
        result = _result(messages)
        assert result.stop_reason == "cancelled"
        assert result.tool_calls == 0
        assert loop.history == []

    @pytest.mark.asyncio
    async def test_cancel_rolls_back_to_run_start_only(self, tmp_path: Path):
        transport = FakeTransport([
            [TextDelta("first answer"), Done("end_turn")],
            [ToolStart("a", "LS", {}), Done("tool_use")],
            [5.0, Done("end_turn")],
        ])
        async with AppContext(make_config(tmp_path), transport=transport) as app:
            loop = app.new_loop()
            await _collect(loop, "one")
            kept = list(loop.history)
            asyncio.get_running_loop().call_later(0.3, loop.cancel)
            result = _result(await _collect(loop, "two"))

        assert result.stop_reason == "cancelled"
        assert loop.history == kept


class TestFailures:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        UpstreamHTTPError(502, '{"error":"down"}', "openai"),
        httpx.ConnectError("connection refused"),
    ])
    async def test_network_errors(self, tmp_path: Path, error: Exception):
        transport = FakeTransport([error])
        async with AppContext(make_config(tmp_path), transport=transport) as app:
            loop = app.new_loop()
            messages = await _collect(loop)

        result = _result(messages)
        assert result.stop_reason == "error"
        assert result.error_kind == "network"
        assert result.error == str(error)
        assert loop.history == []
        assert loop.state is LoopState.ERROR

    @pytest.mark.asyncio
    async def test_stream_error_event(self, tmp_path: Path):
        transport = FakeTransport([[
            TextDelta("partial"), StreamError("busy", "overloaded"), TextDelta("ignored"),
        ]])
        async with AppContext(make_config(tmp_path), transport=transport) as app:
            loop = app.new_loop()
            messages = await _collect(loop)

        texts = _of(messages, TextMessage)
        assert texts == [TextMessage("partial"), TextMessage("partial", is_partial=False)]
        result = _result(messages)
        assert result.error == "busy"
        assert result.error_kind == "network"
        assert loop.history == []

    @pytest.mark.asyncio
    async def test_turn_timeout(self, tmp_path: Path):
        transport = FakeTransport([[TextDelta("slow"), 5.0, Done("end_turn")]])
        config = make_config(tmp_path, gateway=GatewayConfig(turn_timeout=0.1))
        async with AppContext(config, transport=transport) as app:
            loop = app.new_loop()
            started = time.monotonic()
            messages = await _collect(loop)

        assert time.monotonic() - started < 2
        result = _result(messages)
        assert result.stop_reason == "error"
        assert result.error_kind == "network"
        assert result.error == "Turn did not complete within 0.1s"

    @pytest.mark.asyncio
    async def test_internal_error(self, tmp_path: Path):
        transport = FakeTransport([[TextDelta("x"), RuntimeError("boom")]])
        async with AppContext(make_config(tmp_path), transport=transport) as app:
            loop = app.new_loop()
            messages = await _collect(loop)

        result = _result(messages)
        assert result.error_kind == "internal"
        assert result.error == "RuntimeError: boom"
        assert loop.history == []

    @pytest.mark.asyncio
    async def test_missing_provider_keeps_local_tools(self, tmp_path: Path):
        (tmp_path / "a.txt").write_text("alpha")
        transport = FakeTransport([
            [
                ToolStart("l1", "Read", {"file_path": "a.txt"}),
                ToolStart("r1", "database_query", {"sql": "select 1"}),
                Done("tool_use"),
            ],
            [Done("end_turn")],
        ])
        config = make_config(tmp_path, rpc=RpcConfig(provider_path=str(tmp_path / "nope.py")))
        async with AppContext(config, transport=transport) as app:
            messages = await _collect(app.new_loop())

        (event,) = [m for m in _of(messages, SystemEvent) if m.type == "remote_tools_unavailable"]
        assert "nope.py" in event.data["reason"]
        local, remote = _of(messages, ToolOutcome)
        assert not local.is_error
        assert remote.is_error
        assert remote.error_code == "provider_not_found"
        assert _result(messages).stop_reason == "end_turn"

    @pytest.mark.asyncio
    async def test_no_provider_configured_is_silent(self, tmp_path: Path):
        transport = FakeTransport([[Done("end_turn")]])
        async with AppContext(make_config(tmp_path), transport=transport) as app:
            messages = await _collect(app.new_loop())
        assert [m.type for m in _of(messages, SystemEvent)] == ["turn_start"]
