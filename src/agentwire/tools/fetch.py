"""Fetch tool — HTTP requests for API testing and live data debugging."""

from __future__ import annotations

import json
import time
from typing import Any

import httpx

from agentwire.tools.base import BaseTool
from agentwire.types.tools import ToolContext, ToolDef, ToolParam, ToolResult

DEFAULT_TIMEOUT_MS = 30_000
MAX_RESPONSE_CHARS = 500_000
USER_AGENT = "agentwire/0.1"

_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")

_DEFINITION = ToolDef(
    name="Fetch",
    description=(
        "Make an HTTP request and return status, headers and body as JSON. "
        "JSON bodies are parsed; object bodies are sent as JSON."
    ),
    parameters=(
        ToolParam(name="url", type="string", description="Absolute http(s) URL."),
        ToolParam(name="method", type="string", description="HTTP method (default GET).",
                  required=False, enum=_METHODS),
        ToolParam(name="headers", type="object", description="Extra request headers.",
                  required=False),
        ToolParam(name="body", type="string",
                  description="Request body; an object is JSON-encoded.", required=False),
        ToolParam(name="timeout", type="integer",
                  description="Timeout in milliseconds (default 30000).", required=False),
        ToolParam(name="follow_redirects", type="boolean",
                  description="Follow redirects (default true).", required=False),
    ),
)


def _parse_body(text: str, content_type: str) -> Any:
    if "application/json" in content_type or text.startswith(("{", "[")):
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text
    return text


class FetchTool(BaseTool):
    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport

    @property
    def definition(self) -> ToolDef:
        return _DEFINITION

    async def execute(self, args: dict[str, Any], ctx: ToolContext) -> ToolResult:
        url = str(args.get("url") or "")
        if not url:
            return self._error("Missing url parameter")
        try:
            parsed = httpx.URL(url)
        except httpx.InvalidURL:
            return self._error(f"Invalid URL: {url}")
        if parsed.scheme not in ("http", "https") or not parsed.host:
            return self._error(f"Invalid URL: {url}")

        method = str(args.get("method") or "GET").upper()
        if method not in _METHODS:
            return self._error(f"Unsupported method: {method}")

        headers = {"User-Agent": USER_AGENT, **(args.get("headers") or {})}
        body = args.get("body")
        content: str | None = None
        if isinstance(body, (dict, list)):
            content = json.dumps(body)
            if not any(k.lower() == "content-type" for k in headers):
                headers["Content-Type"] = "application/json"
        elif body is not None:
            content = str(body)

        timeout_ms = args.get("timeout") or DEFAULT_TIMEOUT_MS
        follow = args.get("follow_redirects", True) is not False

        start = time.monotonic()
        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                follow_redirects=follow,
                timeout=timeout_ms / 1000,
            ) as client:
                resp = await client.request(method, parsed, headers=headers, content=content)
        except httpx.TimeoutException:
            return self._error(f"Request timed out after {timeout_ms}ms", code="timeout")
        except httpx.HTTPError as exc:
            return self._error(f"Fetch failed: {type(exc).__name__}: {exc}", code="network_error")
        elapsed_ms = round((time.monotonic() - start) * 1000)

        raw = resp.text
        truncated = len(raw) > MAX_RESPONSE_CHARS
        text = raw[:MAX_RESPONSE_CHARS] if truncated else raw
        payload = {
            "status": resp.status_code,
            "status_text": resp.reason_phrase,
            "ok": resp.is_success,
            "url": str(resp.url),
            "elapsed_ms": elapsed_ms,
            "headers": dict(resp.headers),
            "body": _parse_body(text, resp.headers.get("content-type", "")),
            "truncated": truncated,
        }
        path = parsed.raw_path.decode("ascii", errors="replace")
        summary = (
            f"{method} {path}\n"
            f"Status: {resp.status_code} {resp.reason_phrase}\n"
            f"Time: {elapsed_ms}ms\n"
            f"Size: {len(raw)} bytes{' (truncated)' if truncated else ''}"
        )
        if not resp.is_success:
            return self._error(
                f"{method} {url} returned {resp.status_code} {resp.reason_phrase}",
                code="http_status", response=payload,
            )
        return self._ok(json.dumps(payload, indent=2), display=summary)
