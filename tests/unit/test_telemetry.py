"""Tests for the batched telemetry queue and HTTP sink."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from agentwire.telemetry import HttpTelemetrySink, TelemetryQueue, ToolExecutionRecord


def _rec(name: str = "Read", status: str = "success") -> ToolExecutionRecord:
    return ToolExecutionRecord(tool_name=name, execution_time_ms=1.5, result_status=status)


class _Sink:
    def __init__(self, fail_times: int = 0) -> None:
        self.batches: list[list[str]] = []
        self.fail_times = fail_times

    async def send(self, records: list[ToolExecutionRecord]) -> None:
        if self.fail_times:
            self.fail_times -= 1
            raise httpx.ConnectError("collector down")
        self.batches.append([r.tool_name for r in records])


class TestTelemetryQueue:
    @pytest.mark.asyncio
    async def test_flushes_when_batch_full(self):
        sink = _Sink()
        queue = TelemetryQueue(sink, batch_size=3, flush_interval=60)
        for name in ("a", "b", "c"):
            queue.record(_rec(name))
        await asyncio.sleep(0.05)
        assert sink.batches == [["a", "b", "c"]]
        assert queue.pending == 0
        await queue.aclose()

    @pytest.mark.asyncio
    async def test_flushes_on_interval(self):
        sink = _Sink()
        queue = TelemetryQueue(sink, batch_size=100, flush_interval=0.05)
        queue.record(_rec("a"))
        assert sink.batches == []
        await asyncio.sleep(0.2)
        assert sink.batches == [["a"]]
        await queue.aclose()

    @pytest.mark.asyncio
    async def test_failed_batch_is_retried(self):
        sink = _Sink(fail_times=1)
        queue = TelemetryQueue(sink, batch_size=100, flush_interval=60)
        queue.record(_rec("a"))
        queue.record(_rec("b"))
        await queue.flush()
        assert sink.batches == []
        assert queue.pending == 2
        await queue.flush()
        assert sink.batches == [["a", "b"]]
        await queue.aclose()

    @pytest.mark.asyncio
    async def test_backlog_is_capped_keeping_newest(self):
        sink = _Sink(fail_times=10)
        queue = TelemetryQueue(sink, batch_size=2, flush_interval=60)
        for i in range(7):
            queue._queue.append(_rec(f"t{i}"))
        await queue.flush()
        assert queue.pending == 4
        assert queue.dropped == 3
        assert [r.tool_name for r in queue._queue] == ["t3", "t4", "t5", "t6"]

    def test_record_without_loop_does_not_raise(self):
        queue = TelemetryQueue(_Sink())
        queue.record(_rec())
        assert queue.pending == 1

    @pytest.mark.asyncio
    async def test_aclose_flushes_remaining(self):
        sink = _Sink()
        queue = TelemetryQueue(sink, batch_size=100, flush_interval=60)
        queue.record(_rec("last"))
        await queue.aclose()
        assert sink.batches == [["last"]]


class TestHttpSink:
    @pytest.mark.asyncio
    async def test_posts_json_array_with_auth(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        sink = HttpTelemetrySink("https://collector.test/v1/tools", api_key="k1", client=client)
        await sink.send([_rec("Read"), _rec("Bash", "error")])
        await client.aclose()

        (request,) = seen
        assert request.headers["Authorization"] == "Bearer k1"
        body = json.loads(request.content)
        assert [r["tool_name"] for r in body] == ["Read", "Bash"]
        assert body[1]["result_status"] == "error"

    @pytest.mark.asyncio
    async def test_non_2xx_raises(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(503))
        )
        sink = HttpTelemetrySink("https://collector.test/v1/tools", client=client)
        with pytest.raises(httpx.HTTPStatusError):
            await sink.send([_rec()])
        await client.aclose()
