"""Server-sent events: incremental decoding and encoding."""

from __future__ import annotations

import codecs
import json
from typing import Any


def encode_event(payload: dict[str, Any]) -> bytes:
    return f"data: {json.dumps(payload, separators=(',', ':'))}\n\n".encode()


class SSEDecoder:
    """Turns arbitrary byte chunks into complete ``data`` payloads.

    Multi-line data fields are joined with newlines; comments and other
    fields are ignored. Chunk boundaries may fall anywhere, including
    inside a UTF-8 sequence.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._data: list[str] = []

    def feed(self, chunk: bytes) -> list[str]:
        self._buffer += self._decoder.decode(chunk)
        events: list[str] = []
        while True:
            newline = self._buffer.find("\n")
            if newline < 0:
                break
            line = self._buffer[:newline].rstrip("\r")
            self._buffer = self._buffer[newline + 1:]
            self._line(line, events)
        return events

    def flush(self) -> list[str]:
        """End of stream: emit whatever is still buffered."""
        self._buffer += self._decoder.decode(b"", final=True)
        events: list[str] = []
        if self._buffer:
            self._line(self._buffer.rstrip("\r"), events)
            self._buffer = ""
        self._line("", events)
        return events

    def _line(self, line: str, events: list[str]) -> None:
        if not line:
            if self._data:
                events.append("\n".join(self._data))
                self._data = []
            return
        if line.startswith(":"):
            return
        field, _, value = line.partition(":")
        if field == "data":
            self._data.append(value[1:] if value.startswith(" ") else value)
