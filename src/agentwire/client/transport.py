"""GatewayClient — POSTs one turn to the gateway and streams events back."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any, Protocol

import httpx

from agentwire.client.stream import StreamParser
from agentwire.errors import UpstreamHTTPError
from agentwire.types.config import GatewayConfig
from agentwire.types.events import StreamEvent

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Anything that turns an outbound payload into a stream of events."""

    def stream_turn(self, payload: dict[str, Any]) -> AsyncIterator[StreamEvent]: ...


class GatewayClient:
    """httpx client for ``POST /agentic-loop``.

    The response is closed whenever the consuming generator is closed,
    including on cancellation.
    """

    def __init__(
        self,
        config: GatewayConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or GatewayConfig()
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self._config.turn_timeout, connect=self._config.connect_timeout),
        )
        self._owns_client = client is None

    @property
    def url(self) -> str:
        return self._config.url.rstrip("/") + "/agentic-loop"

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "text/event-stream"}
        if self._config.api_key:
            headers["Authorization"] = f"Bearer {self._config.api_key}"
        return headers

    async def stream_turn(self, payload: dict[str, Any]) -> AsyncIterator[StreamEvent]:
        """Raises ``UpstreamHTTPError`` on a non-2xx status, ``httpx.HTTPError`` on transport failure."""
        parser = StreamParser()
        async with self._client.stream(
            "POST", self.url, json=payload, headers=self._headers(),
        ) as response:
            if not response.is_success:
                body = (await response.aread()).decode("utf-8", errors="replace")
                logger.warning("Gateway returned %d: %s", response.status_code, body[:500])
                raise UpstreamHTTPError(
                    response.status_code, body, response.headers.get("X-Provider"),
                )
            async for line in response.aiter_lines():
                for event in parser.feed_line(line):
                    yield event
            for event in parser.finish():
                yield event

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> GatewayClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()
