"""User interaction channels for tools that need an answer from the UI.

A tool that must ask the user something (a question, or approval for a
dangerous command) publishes a prompt carrying a one-shot ``Rendezvous``
and awaits it. The UI consumes prompts from ``InteractionBroker.prompts``
and answers each one exactly once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Generic, TypeVar

import anyio
from anyio.abc import ObjectReceiveStream, ObjectSendStream

from agentwire.errors import RendezvousClosed

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Rendezvous(Generic[T]):
    """One value, sent once, received once.

    Closing before a value is sent makes the waiting receiver raise
    ``RendezvousClosed``.
    """

    def __init__(self) -> None:
        send: ObjectSendStream[T]
        recv: ObjectReceiveStream[T]
        send, recv = anyio.create_memory_object_stream[T](max_buffer_size=1)
        self._send = send
        self._recv = recv
        self._resolved = False

    @property
    def resolved(self) -> bool:
        return self._resolved

    def send(self, value: T) -> None:
        if self._resolved:
            raise RuntimeError("Rendezvous already answered")
        try:
            self._send.send_nowait(value)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError) as exc:
            raise RendezvousClosed("Nobody is waiting for this answer anymore") from exc
        self._resolved = True
        self._send.close()

    async def receive(self) -> T:
        try:
            return await self._recv.receive()
        except (anyio.EndOfStream, anyio.ClosedResourceError) as exc:
            raise RendezvousClosed("Interaction closed before an answer arrived") from exc
        finally:
            self._recv.close()

    def close(self) -> None:
        self._send.close()


@dataclass(frozen=True, slots=True)
class QuestionPrompt:
    tool_use_id: str
    question: str
    options: tuple[str, ...] = ()
    reply: Rendezvous[str] = field(default_factory=Rendezvous, compare=False)


@dataclass(frozen=True, slots=True)
class PermissionPrompt:
    tool_use_id: str
    tool_name: str
    operation: str
    reason: str = ""
    reply: Rendezvous[bool] = field(default_factory=Rendezvous, compare=False)


Prompt = QuestionPrompt | PermissionPrompt


class InteractionBroker:
    """Queue of prompts waiting for the UI."""

    def __init__(self, buffer_size: int = 16) -> None:
        send: ObjectSendStream[Prompt]
        recv: ObjectReceiveStream[Prompt]
        send, recv = anyio.create_memory_object_stream[Prompt](max_buffer_size=buffer_size)
        self._send = send
        self._recv = recv
        self._open: set[Rendezvous[str] | Rendezvous[bool]] = set()

    @property
    def prompts(self) -> ObjectReceiveStream[Prompt]:
        """Stream the UI iterates to answer prompts."""
        return self._recv

    async def ask(self, tool_use_id: str, question: str, options: tuple[str, ...] = ()) -> str:
        prompt = QuestionPrompt(tool_use_id, question, options)
        return await self._publish(prompt, prompt.reply)

    async def request_permission(
        self, tool_use_id: str, tool_name: str, operation: str, reason: str = "",
    ) -> bool:
        prompt = PermissionPrompt(tool_use_id, tool_name, operation, reason)
        return await self._publish(prompt, prompt.reply)

    async def _publish(self, prompt: Prompt, reply: Rendezvous[T]) -> T:
        self._open.add(reply)
        try:
            await self._send.send(prompt)
            return await reply.receive()
        finally:
            self._open.discard(reply)

    def cancel_all(self) -> None:
        """Close every outstanding rendezvous; waiting tools see ``RendezvousClosed``."""
        for reply in list(self._open):
            reply.close()
        self._open.clear()

    async def aclose(self) -> None:
        self.cancel_all()
        await self._send.aclose()
        await self._recv.aclose()
