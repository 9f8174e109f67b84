"""FastAPI application exposing the provider gateway."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import Depends, FastAPI, status
from fastapi.responses import JSONResponse, StreamingResponse

from agentwire import __version__
from agentwire.errors import MissingCredentials, UnsupportedProvider, UpstreamHTTPError
from agentwire.gateway.request import GatewayRequest
from agentwire.gateway.service import ProviderGateway

logger = logging.getLogger(__name__)


def create_app(gateway: ProviderGateway | None = None) -> FastAPI:
    _gateway = gateway or ProviderGateway()

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        if gateway is None:
            await _gateway.aclose()

    app = FastAPI(title="agentwire gateway", version=__version__, lifespan=lifespan)

    def get_gateway() -> ProviderGateway:
        return _gateway

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    @app.post("/agentic-loop")
    async def agentic_loop(
        request: GatewayRequest, gw: ProviderGateway = Depends(get_gateway),
    ) -> Any:
        # Malformed bodies are rejected with 422 by FastAPI before this runs.
        try:
            stream = await gw.open_stream(request)
        except UnsupportedProvider as exc:
            return JSONResponse({"error": str(exc)}, status_code=status.HTTP_400_BAD_REQUEST)
        except MissingCredentials as exc:
            return JSONResponse({"error": str(exc)}, status_code=500)
        except UpstreamHTTPError as exc:
            return JSONResponse(
                {"error": str(exc), "details": exc.body}, status_code=exc.status,
            )
        except httpx.HTTPError as exc:
            logger.warning("Upstream transport error: %s", exc)
            return JSONResponse({"error": f"Upstream unreachable: {exc}"}, status_code=502)

        return StreamingResponse(
            stream,
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "X-Provider": stream.provider.value,
                "X-Model": stream.model,
            },
        )

    return app
