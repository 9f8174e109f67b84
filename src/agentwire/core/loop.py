"""The conversation loop — streams turns from the gateway and runs tool batches."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import sys
import time
import uuid
from collections.abc import AsyncIterator, Awaitable
from contextlib import aclosing
from enum import Enum
from typing import Any, TypeVar

import httpx

from agentwire.client.transport import Transport
from agentwire.context.manager import ContextManager
from agentwire.core.router import ToolRouter
from agentwire.errors import LoopLimitExceeded, TurnCancelled, TurnTimeout, UpstreamHTTPError
from agentwire.observability.metrics import record_tokens, record_turn_latency
from agentwire.types.config import AppConfig
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
    ChatMessage,
    LimitExceeded,
    Message,
    Result,
    SystemEvent,
    TextMessage,
    ToolOutcome,
    ToolUse,
    text_block,
    tool_result_block,
    tool_use_block,
)
from agentwire.types.tools import ToolCall, ToolContext, ToolDef, ToolResult, dedupe_schemas

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LoopState(Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    PAUSED_FOR_TOOLS = "paused_for_tools"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclasses.dataclass(slots=True)
class _Round:
    """What one streamed response produced."""

    text: list[str] = dataclasses.field(default_factory=list)
    calls: dict[str, ToolStart] = dataclasses.field(default_factory=dict)
    pause: PauseForTools | None = None
    stop_reason: str | None = None
    error: StreamError | None = None
    input_tokens: int = 0
    output_tokens: int = 0


class ConversationLoop:
    """Drives one conversation against the gateway.

    Each ``run()`` call is one user prompt: it streams a response, executes
    any requested tools as a concurrent batch, sends the results back and
    repeats until the model stops asking for tools or a safety cap is hit.
    Canonical history lives here; the gateway only ever sees a truncated
    copy prepared by the ``ContextManager``.
    """

    def __init__(
        self,
        *,
        transport: Transport,
        router: ToolRouter,
        context: ContextManager,
        config: AppConfig,
        tool_context: ToolContext,
        local_tools: list[ToolDef],
        conversation_id: str | None = None,
        history: list[ChatMessage] | None = None,
    ) -> None:
        self._transport = transport
        self._router = router
        self._context = context
        self._config = config
        self._tool_context = tool_context
        self._local_tools = local_tools
        self.conversation_id = conversation_id or uuid.uuid4().hex[:12]
        self._history: list[ChatMessage] = list(history or [])

        self._state = LoopState.IDLE
        self._inflight: asyncio.Future[Any] | None = None
        self._cancel_requested = False
        self._applied_ids: set[str] = set()
        # Every id that already produced a ToolOutcome, local or server-side.
        self._rendered_ids: set[str] = set()
        self._tool_call_count = 0
        self._loop_depth = 0

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def history(self) -> list[ChatMessage]:
        """Canonical history. Do not mutate."""
        return self._history

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Abort the running turn at whatever point it has reached.

        The open response or tool batch is cancelled, the history is rolled
        back to where this turn started and ``run()`` finishes with a
        ``cancelled`` result. Background tasks keep running.
        """
        self._cancel_requested = True
        interaction = self._tool_context.interaction
        if interaction is not None:
            interaction.cancel_all()
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()

    async def _guard(self, aw: Awaitable[T], deadline: float | None = None) -> T:
        """Await ``aw`` as a task that ``cancel()`` can reach."""
        task = asyncio.ensure_future(aw)
        self._inflight = task
        if self._cancel_requested:
            task.cancel()
        try:
            if deadline is None:
                return await task
            async with asyncio.timeout_at(deadline):
                return await task
        except TimeoutError:
            raise TurnTimeout(self._config.gateway.turn_timeout) from None
        except asyncio.CancelledError:
            if self._cancel_requested:
                raise TurnCancelled("Turn cancelled") from None
            raise
        finally:
            self._inflight = None

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self, user_message: str) -> AsyncIterator[Message]:
        """Run one user prompt to completion. Yields loop output messages."""
        self._cancel_requested = False
        self._tool_call_count = 0
        self._loop_depth = 0
        checkpoint = len(self._history)
        self._history.append(ChatMessage(role="user", content=user_message))

        yield SystemEvent(type="turn_start", data={"conversation_id": self.conversation_id})

        turns = 0
        input_tokens = 0
        output_tokens = 0
        final_text = ""

        try:
            schemas = await self._tool_schemas()
            if not self._router.remote_enabled and self._router.remote_disabled_reason:
                yield SystemEvent(
                    type="remote_tools_unavailable",
                    data={"reason": self._router.remote_disabled_reason},
                )

            while True:
                turns += 1
                started = time.monotonic()
                self._state = LoopState.SENDING
                payload = self._build_payload(user_message, schemas)

                rnd = _Round()
                async for msg in self._stream_round(payload, rnd):
                    yield msg

                input_tokens += rnd.input_tokens
                output_tokens += rnd.output_tokens
                provider = self._config.gateway.provider
                record_tokens(rnd.input_tokens, rnd.output_tokens, provider=provider)
                record_turn_latency((time.monotonic() - started) * 1000, provider=provider)

                text = "".join(rnd.text)
                if text:
                    final_text = text
                    yield TextMessage(text=text, is_partial=False)

                if rnd.error is not None:
                    self._rollback(checkpoint)
                    self._state = LoopState.ERROR
                    yield self._result(
                        final_text, turns, input_tokens, output_tokens,
                        stop_reason="error", error=rnd.error.message, error_kind="network",
                    )
                    return

                calls = list(rnd.calls.values())
                if not calls:
                    if text:
                        self._history.append(ChatMessage(role="assistant", content=[text_block(text)]))
                    self._state = LoopState.DONE
                    yield self._result(
                        final_text, turns, input_tokens, output_tokens,
                        stop_reason=rnd.stop_reason or "end_turn",
                    )
                    return

                if rnd.pause is not None:
                    self._state = LoopState.PAUSED_FOR_TOOLS
                    if rnd.pause.tool_call_count is not None:
                        self._tool_call_count = rnd.pause.tool_call_count
                    if rnd.pause.loop_depth is not None:
                        self._loop_depth = rnd.pause.loop_depth

                try:
                    self._check_limits(len(calls))
                except LoopLimitExceeded as exc:
                    if text:
                        self._history.append(ChatMessage(role="assistant", content=[text_block(text)]))
                    self._state = LoopState.DONE
                    yield LimitExceeded(
                        reason=exc.reason, tool_calls=exc.tool_calls, loop_depth=exc.loop_depth,
                    )
                    yield self._result(
                        final_text, turns, input_tokens, output_tokens,
                        stop_reason="limit_exceeded",
                    )
                    return

                async for msg in self._run_batch(calls, rnd, text):
                    yield msg

        except TurnCancelled:
            logger.info("Turn cancelled in state %s", self._state.value)
            self._rollback(checkpoint)
            self._state = LoopState.CANCELLED
            yield self._result(final_text, turns, input_tokens, output_tokens,
                               stop_reason="cancelled")
        except (UpstreamHTTPError, TurnTimeout, httpx.HTTPError) as exc:
            logger.warning("Turn failed: %s", exc)
            self._rollback(checkpoint)
            self._state = LoopState.ERROR
            yield self._result(
                final_text, turns, input_tokens, output_tokens,
                stop_reason="error", error=str(exc), error_kind="network",
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("Conversation loop aborted")
            self._rollback(checkpoint)
            self._state = LoopState.ERROR
            yield self._result(
                final_text, turns, input_tokens, output_tokens,
                stop_reason="error", error=f"{type(exc).__name__}: {exc}", error_kind="internal",
            )

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def _stream_round(self, payload: dict[str, Any], rnd: _Round) -> AsyncIterator[Message]:
        deadline = asyncio.get_running_loop().time() + self._config.gateway.turn_timeout
        stream = self._transport.stream_turn(payload)
        self._state = LoopState.STREAMING
        async with aclosing(stream):
            while True:
                event = await self._guard(anext(stream, None), deadline)
                if event is None:
                    break

                match event:
                    case TextDelta(text=text):
                        rnd.text.append(text)
                        yield TextMessage(text=text)
                    case ToolStart():
                        self._buffer_call(event, rnd)
                    case PauseForTools(calls=calls):
                        for call in calls:
                            self._buffer_call(call, rnd)
                        rnd.pause = event
                        break
                    case ToolResultEvent(id=tool_id, name=name, content=content, is_error=is_error):
                        if tool_id in self._rendered_ids:
                            logger.debug("Duplicate tool result %s (%s) ignored", tool_id, name)
                            continue
                        self._rendered_ids.add(tool_id)
                        yield ToolOutcome(
                            tool_use_id=tool_id, name=name,
                            content=content if isinstance(content, str) else str(content),
                            is_error=is_error,
                        )
                    case Usage(input_tokens=i, output_tokens=o):
                        rnd.input_tokens = max(rnd.input_tokens, i)
                        rnd.output_tokens = max(rnd.output_tokens, o)
                    case StreamError():
                        logger.warning("Stream error: %s", event.message)
                        rnd.error = event
                        break
                    case Done(stop_reason=stop):
                        rnd.stop_reason = stop or rnd.stop_reason

    def _buffer_call(self, call: ToolStart, rnd: _Round) -> None:
        if not call.id:
            logger.warning("Ignoring tool call %s without an id", call.name)
            return
        if call.id in rnd.calls or call.id in self._applied_ids:
            logger.debug("Duplicate tool call %s (%s) ignored", call.id, call.name)
            return
        rnd.calls[call.id] = call

    # ------------------------------------------------------------------
    # Tool execution
    # ------------------------------------------------------------------

    def _check_limits(self, batch_size: int) -> None:
        """Raise ``LoopLimitExceeded`` if running ``batch_size`` more calls would break a cap."""
        limits = self._config.loop
        if self._tool_call_count + batch_size > limits.max_tool_calls:
            reason = f"Tool call limit reached ({limits.max_tool_calls})"
        elif self._loop_depth + 1 > limits.max_loop_depth:
            reason = f"Loop depth limit reached ({limits.max_loop_depth})"
        else:
            return
        logger.warning("%s after %d calls at depth %d", reason, self._tool_call_count,
                       self._loop_depth)
        raise LoopLimitExceeded(
            reason, tool_calls=self._tool_call_count, loop_depth=self._loop_depth,
        )

    async def _run_batch(
        self, starts: list[ToolStart], rnd: _Round, text: str,
    ) -> AsyncIterator[Message]:
        self._state = LoopState.EXECUTING_TOOLS
        calls = [ToolCall(id=s.id, name=s.name, input=dict(s.input)) for s in starts]
        for call in calls:
            yield ToolUse(id=call.id, name=call.name, args=call.input)

        batch_id = uuid.uuid4().hex[:8]
        timed = await self._guard(asyncio.gather(
            *(self._execute(call, batch_id, len(calls)) for call in calls)
        ))

        result_blocks: list[dict[str, Any]] = []
        for call, (result, elapsed_ms) in zip(calls, timed):
            content = result.to_content()
            self._rendered_ids.add(call.id)
            yield ToolOutcome(
                tool_use_id=call.id,
                name=call.name,
                content=result.text or content,
                is_error=result.is_error,
                error_code=result.error_code,
                elapsed_ms=elapsed_ms,
                display=result.display,
            )
            result_blocks.append(tool_result_block(call.id, content, result.is_error))

        self._history.append(ChatMessage(
            role="assistant", content=self._assistant_content(calls, rnd, text),
        ))
        self._history.append(ChatMessage(role="user", content=result_blocks))
        self._applied_ids.update(call.id for call in calls)
        self._tool_call_count += len(calls)
        self._loop_depth += 1

    async def _execute(self, call: ToolCall, batch_id: str, batch_size: int) -> tuple[ToolResult, float]:
        call.start()
        ctx = dataclasses.replace(self._tool_context, tool_use_id=call.id)
        start = time.monotonic()
        result = await self._router.dispatch(
            call, ctx,
            conversation_id=self.conversation_id, batch_id=batch_id, batch_size=batch_size,
        )
        call.finish(result)
        return result, round((time.monotonic() - start) * 1000, 2)

    @staticmethod
    def _assistant_content(calls: list[ToolCall], rnd: _Round, text: str) -> list[dict[str, Any]]:
        """The assistant message that carries this batch's tool_use blocks.

        Content echoed back by the server is kept, minus tool_use blocks that
        were deduplicated away; every executed call appears exactly once.
        """
        ids = {call.id for call in calls}
        content: list[dict[str, Any]] = []
        seen: set[str] = set()
        if rnd.pause is not None and rnd.pause.assistant_content:
            for block in rnd.pause.assistant_content:
                if block.get("type") == "tool_use":
                    if block.get("id") not in ids or block.get("id") in seen:
                        continue
                    seen.add(block["id"])
                content.append(block)
        elif text:
            content.append(text_block(text))
        for call in calls:
            if call.id not in seen:
                content.append(tool_use_block(call.id, call.name, call.input))
        return content

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _tool_schemas(self) -> list[dict[str, Any]]:
        remote = await self._guard(self._router.remote_definitions())
        return dedupe_schemas([d.to_schema() for d in [*self._local_tools, *remote]])

    def _build_payload(self, user_message: str, schemas: list[dict[str, Any]]) -> dict[str, Any]:
        config = self._config
        payload: dict[str, Any] = {
            "message": user_message,
            "history": [m.to_dict() for m in self._context.prepare_history(self._history)],
            "local_tools": schemas,
            "provider": config.gateway.provider,
            "model": config.gateway.model,
            "system_prompt": config.system_prompt,
            "project_context": config.project_context,
            "working_directory": str(self._tool_context.cwd),
            "platform": sys.platform,
            "client": "cli",
            "format_hint": "terminal",
            "tool_call_count": self._tool_call_count,
            "loop_depth": self._loop_depth,
            "context_management": self._context.server_side_config(),
        }
        return {k: v for k, v in payload.items() if v is not None}

    def _rollback(self, checkpoint: int) -> None:
        del self._history[checkpoint:]

    def _result(
        self, text: str, turns: int, input_tokens: int, output_tokens: int, *,
        stop_reason: str, error: str | None = None, error_kind: str | None = None,
    ) -> Result:
        return Result(
            text=text,
            conversation_id=self.conversation_id,
            turns=turns,
            tool_calls=self._tool_call_count,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            stop_reason=stop_reason,
            error=error,
            error_kind=error_kind,
        )
