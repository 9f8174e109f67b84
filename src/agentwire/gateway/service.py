"""ProviderGateway — opens the upstream stream and normalizes it."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Mapping

import httpx

from agentwire.errors import UpstreamHTTPError
from agentwire.gateway.providers import Provider, Upstream, UpstreamRequest, default_upstream
from agentwire.gateway.request import GatewayRequest
from agentwire.gateway.transform import StreamNormalizer, normalizer_for

logger = logging.getLogger(__name__)


class GatewayStream:
    """An open upstream response, iterated as unified SSE bytes."""

    def __init__(self, upstream: UpstreamRequest, response: httpx.Response,
                 normalizer: StreamNormalizer) -> None:
        self.provider = upstream.provider
        self.model = upstream.model
        self._response = response
        self._normalizer = normalizer

    async def __aiter__(self) -> AsyncIterator[bytes]:
        try:
            for out in self._normalizer.start():
                yield out
            async for chunk in self._response.aiter_bytes():
                for out in self._normalizer.feed(chunk):
                    yield out
            for out in self._normalizer.finish():
                yield out
        finally:
            await self._response.aclose()

    async def aclose(self) -> None:
        await self._response.aclose()


class ProviderGateway:
    """Stateless per request; owns only the shared HTTP client."""

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        credentials: Mapping[str, str] | None = None,
        upstreams: Mapping[Provider, Upstream] | None = None,
        timeout: float = 120.0,
    ) -> None:
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=10.0))
        self._owns_client = client is None
        self._credentials = credentials
        self._upstreams = dict(upstreams or {})

    async def __aenter__(self) -> ProviderGateway:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def upstream(self, provider: Provider) -> Upstream:
        return self._upstreams.get(provider) or default_upstream(provider)

    def build_upstream(self, request: GatewayRequest) -> UpstreamRequest:
        """Raises ``UnsupportedProvider`` or ``MissingCredentials``."""
        provider = Provider.parse(request.provider)
        return self.upstream(provider).build_request(request, self._credentials)

    async def open_stream(self, request: GatewayRequest) -> GatewayStream:
        """Send the upstream request; raise ``UpstreamHTTPError`` on non-2xx.

        Errors are never retried here.
        """
        upstream = self.build_upstream(request)
        logger.info(
            "Upstream %s model=%s messages=%d tools=%d depth=%s",
            upstream.provider.value, upstream.model, len(request.messages()),
            len(request.tools), request.loop_depth,
        )
        http_request = self._client.build_request(
            "POST", upstream.url, headers=upstream.headers, json=upstream.body,
        )
        response = await self._client.send(http_request, stream=True)
        if not response.is_success:
            body = (await response.aread()).decode("utf-8", errors="replace")
            await response.aclose()
            logger.warning("%s returned %d: %s", upstream.provider.value,
                           response.status_code, body[:500])
            raise UpstreamHTTPError(response.status_code, body, upstream.provider.value)
        return GatewayStream(upstream, response, normalizer_for(upstream.provider, upstream.model))
