"""Batched tool-execution telemetry.

Records are queued without blocking the caller and shipped by a sink in
batches: as soon as ``batch_size`` records are waiting, or after
``flush_interval`` seconds, whichever comes first.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ToolExecutionRecord:
    tool_name: str
    execution_time_ms: float
    result_status: str  # "success" | "error"
    error_message: str | None = None
    error_code: str | None = None
    was_parallel: bool = False
    batch_id: str | None = None
    batch_size: int = 1
    remote: bool = False
    conversation_id: str | None = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


class TelemetrySink(Protocol):
    async def send(self, records: list[ToolExecutionRecord]) -> None:
        """Ship one batch. Raising means the batch should be retried."""
        ...


class NullTelemetrySink:
    """Discards everything."""

    async def send(self, records: list[ToolExecutionRecord]) -> None:
        return None


class HttpTelemetrySink:
    """POSTs batches as a JSON array to a collector endpoint."""

    def __init__(
        self,
        url: str,
        *,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def send(self, records: list[ToolExecutionRecord]) -> None:
        response = await self._client.post(
            self._url, json=[r.to_dict() for r in records], headers=self._headers,
        )
        response.raise_for_status()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class TelemetryQueue:
    """Fire-and-forget queue in front of a ``TelemetrySink``."""

    def __init__(
        self,
        sink: TelemetrySink | None = None,
        *,
        batch_size: int = 20,
        flush_interval: float = 5.0,
    ) -> None:
        self._sink: TelemetrySink = sink or NullTelemetrySink()
        self._batch_size = batch_size
        self._flush_interval = flush_interval
        self._max_backlog = batch_size * 2
        self._queue: list[ToolExecutionRecord] = []
        self._timer: asyncio.TimerHandle | None = None
        self._flushes: set[asyncio.Task[None]] = set()
        self._lock = asyncio.Lock()
        self._dropped = 0

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def dropped(self) -> int:
        return self._dropped

    def record(self, rec: ToolExecutionRecord) -> None:
        """Queue a record. Never blocks and never raises."""
        self._queue.append(rec)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # no loop yet; the next flush() picks it up

        if len(self._queue) >= self._batch_size:
            self._schedule_flush()
        else:
            self._arm_timer(loop)

    def _arm_timer(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        if self._timer is None:
            loop = loop or asyncio.get_running_loop()
            self._timer = loop.call_later(self._flush_interval, self._schedule_flush)

    def _schedule_flush(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        task = asyncio.get_running_loop().create_task(self.flush())
        self._flushes.add(task)
        task.add_done_callback(self._flushes.discard)

    async def flush(self) -> None:
        """Send everything queued. A failed batch goes back to the front."""
        async with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            if not self._queue:
                return

            batch, self._queue = self._queue, []
            try:
                await self._sink.send(batch)
            except Exception as exc:  # noqa: BLE001
                logger.debug("Telemetry flush of %d records failed: %s", len(batch), exc)
                backlog = batch + self._queue
                if len(backlog) > self._max_backlog:
                    self._dropped += len(backlog) - self._max_backlog
                    backlog = backlog[-self._max_backlog:]
                self._queue = backlog
                self._arm_timer()
            else:
                logger.debug("Flushed %d telemetry records", len(batch))

    async def aclose(self) -> None:
        """Final flush on shutdown."""
        for task in list(self._flushes):
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self.flush()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._queue:
            logger.debug("Discarding %d unsent telemetry records at shutdown", len(self._queue))
        aclose = getattr(self._sink, "aclose", None)
        if aclose is not None:
            await aclose()
