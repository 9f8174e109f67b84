"""Test fixtures: a scripted gateway transport and a fake stdio tool provider."""

from __future__ import annotations

import asyncio
import copy
import textwrap
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import pytest

from agentwire.types.config import AppConfig, ContextBudget, RpcConfig
from agentwire.types.events import Done, StreamEvent

# A scripted turn is a list of StreamEvents, numbers (seconds to sleep
# before the next item) and exceptions (raised at that point).
ScriptedTurn = list[Any]


class FakeTransport:
    """Replays one scripted turn per ``stream_turn`` call.

    Usage:
        transport = FakeTransport([
            [TextDelta("Reading."), ToolStart("tu1", "Read", {"file_path": "a.py"}), Done("tool_use")],
            [TextDelta("Done."), Done("end_turn")],
        ])
    """

    def __init__(self, turns: list[ScriptedTurn | BaseException]) -> None:
        self._turns = list(turns)
        self.payloads: list[dict[str, Any]] = []
        self.closed = 0

    async def stream_turn(self, payload: dict[str, Any]) -> AsyncIterator[StreamEvent]:
        self.payloads.append(copy.deepcopy(payload))
        if not self._turns:
            yield Done("end_turn")
            return
        turn = self._turns.pop(0)
        if isinstance(turn, BaseException):
            raise turn
        try:
            for item in turn:
                if isinstance(item, BaseException):
                    raise item
                if isinstance(item, (int, float)):
                    await asyncio.sleep(item)
                    continue
                yield item
        finally:
            self.closed += 1


_FAKE_PROVIDER = textwrap.dedent('''
    """Fake MCP tool provider speaking line-delimited JSON-RPC on stdio."""
    import json
    import os
    import sys
    import threading
    import time

    MODE = {mode!r}
    lock = threading.Lock()
    EMPTY = {{"type": "object", "properties": {{}}}}

    TOOLS = [
        {{"name": "echo", "description": "Echo text back",
         "inputSchema": {{"type": "object", "properties": {{"text": {{"type": "string"}}}}}}}},
        {{"name": "sleep", "description": "Reply after ms milliseconds",
         "inputSchema": {{"type": "object", "properties": {{"ms": {{"type": "integer"}}}}}}}},
        {{"name": "fail", "description": "Always reports isError", "inputSchema": EMPTY}},
        {{"name": "structured", "description": "Returns a JSON object", "inputSchema": EMPTY}},
        {{"name": "explode", "description": "Returns a JSON-RPC error", "inputSchema": EMPTY}},
        {{"name": "hang", "description": "Never replies", "inputSchema": EMPTY}},
        {{"name": "crash", "description": "Exits the process", "inputSchema": EMPTY}},
    ]


    def send(msg):
        with lock:
            if MODE == "noise":
                sys.stdout.write("this is not json\\n")
                sys.stdout.write(json.dumps({{"jsonrpc": "2.0", "id": 99999, "result": {{}}}}) + "\\n")
            sys.stdout.write(json.dumps(msg) + "\\n")
            sys.stdout.flush()


    def text(req_id, value, is_error=False):
        result = {{"content": [{{"type": "text", "text": value}}]}}
        if is_error:
            result["isError"] = True
        send({{"jsonrpc": "2.0", "id": req_id, "result": result}})


    def call_tool(req_id, name, args):
        if name == "echo":
            text(req_id, "echo: " + str(args.get("text", "")))
        elif name == "sleep":
            time.sleep(args.get("ms", 0) / 1000)
            text(req_id, "slept " + str(args.get("ms", 0)))
        elif name == "fail":
            text(req_id, "remote failure", is_error=True)
        elif name == "structured":
            text(req_id, json.dumps({{"rows": [1, 2], "count": 2}}))
        elif name == "explode":
            send({{"jsonrpc": "2.0", "id": req_id,
                  "error": {{"code": -32000, "message": "exploded", "data": {{"why": "test"}}}}}})
        elif name == "hang":
            return
        elif name == "crash":
            sys.stdout.flush()
            os._exit(3)
        else:
            send({{"jsonrpc": "2.0", "id": req_id,
                  "error": {{"code": -32601, "message": "Unknown tool " + name}}}})


    def handle(msg):
        req_id = msg.get("id")
        method = msg.get("method")
        if req_id is None:
            return
        if method == "initialize":
            if MODE == "silent":
                return
            send({{"jsonrpc": "2.0", "id": req_id, "result": {{
                "protocolVersion": msg["params"]["protocolVersion"],
                "capabilities": {{"tools": {{}}}},
                "serverInfo": {{"name": "fake-provider", "version": "1.0"}},
            }}}})
        elif method == "tools/list":
            send({{"jsonrpc": "2.0", "id": req_id, "result": {{"tools": TOOLS}}}})
        elif method == "tools/call":
            params = msg.get("params") or {{}}
            threading.Thread(
                target=call_tool,
                args=(req_id, params.get("name"), params.get("arguments") or {{}}),
                daemon=True,
            ).start()
        else:
            send({{"jsonrpc": "2.0", "id": req_id,
                  "error": {{"code": -32601, "message": "Method not found"}}}})


    for line in sys.stdin:
        line = line.strip()
        if line:
            handle(json.loads(line))
''')


def write_fake_provider(directory: Path, mode: str = "normal") -> Path:
    """Write the fake provider script and return its path.

    Modes: ``normal``; ``noise`` (junk lines and unknown ids before every
    response); ``silent`` (never answers ``initialize``).
    """
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / "server.py"
    path.write_text(_FAKE_PROVIDER.format(mode=mode))
    return path


def make_config(tmp_path: Path, **overrides: Any) -> AppConfig:
    """An AppConfig rooted in ``tmp_path`` with remote tools off."""
    defaults: dict[str, Any] = {
        "cwd": tmp_path,
        "rpc": RpcConfig(enabled=False),
        "budget": ContextBudget(output_dir=tmp_path / ".outputs"),
    }
    defaults.update(overrides)
    return AppConfig(**defaults)


@pytest.fixture
def fake_provider(tmp_path: Path) -> Path:
    return write_fake_provider(tmp_path / "provider")


@pytest.fixture
def rpc_config(fake_provider: Path) -> RpcConfig:
    return RpcConfig(provider_path=str(fake_provider), handshake_timeout=10.0, call_timeout=10.0)


@pytest.fixture
def tmp_project(tmp_path: Path) -> Path:
    """Create a temporary project directory with sample files."""
    (tmp_path / "README.md").write_text("# Test Project\n\nA test project.\n")
    (tmp_path / "main.py").write_text("def hello():\n    print('Hello, world!')\n\nhello()\n")
    src = tmp_path / "src"
    src.mkdir()
    (src / "utils.py").write_text("def add(a, b):\n    return a + b\n")
    (src / "app.py").write_text("from utils import add\n\nresult = add(1, 2)\nprint(result)\n")
    return tmp_path
