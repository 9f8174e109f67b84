"""Plain and rich printers for loop output."""

from __future__ import annotations

import sys
from typing import Any

from rich.console import Console
from rich.text import Text

from agentwire.types.messages import (
    LimitExceeded,
    Message,
    Result,
    SystemEvent,
    TextMessage,
    ToolOutcome,
    ToolUse,
)


def tool_detail(name: str, args: dict[str, Any]) -> str:
    """One-line summary of a tool call's most telling argument."""
    if name == "Bash" and "command" in args:
        cmd = str(args["command"])
        return f"$ {cmd}" if len(cmd) <= 120 else f"$ {cmd[:117]}..."
    if name in ("Read", "Write", "Edit") and "file_path" in args:
        return str(args["file_path"])
    if name == "Glob" and "pattern" in args:
        return str(args["pattern"])
    if name == "Grep" and "pattern" in args:
        return f"/{args['pattern']}/"
    if name == "LS":
        return str(args.get("path", "."))
    if name == "TaskStatus":
        return " ".join(str(args[k]) for k in ("action", "task_id") if k in args)
    return ""


def _summary(result: Result) -> str:
    parts = [f"Conversation: {result.conversation_id}", f"Turns: {result.turns}",
             f"Tools: {result.tool_calls}"]
    if result.total_tokens:
        parts.append(f"Tokens: {result.total_tokens:,}")
    if result.stop_reason not in ("end_turn", "tool_use"):
        parts.append(f"Stop: {result.stop_reason}")
    return " | ".join(parts)


def print_message(msg: Message) -> None:
    """Print a message to stdout in basic text mode."""
    match msg:
        case TextMessage(text=t, is_partial=True):
            sys.stdout.write(t)
            sys.stdout.flush()
        case TextMessage(is_partial=False):
            pass  # Full text already printed via partials
        case ToolUse(name=name, args=args):
            detail = tool_detail(name, args)
            print(f"\n[Tool: {name}]" + (f" {detail}" if detail else ""), file=sys.stderr)
        case ToolOutcome(content=content, is_error=True, error_code=code):
            print(f"[Error{f' {code}' if code else ''}] {content[:200]}", file=sys.stderr)
        case ToolOutcome(content=content) if len(content) > 200:
            print(f"[Result] {content[:200]}...", file=sys.stderr)
        case ToolOutcome():
            pass
        case LimitExceeded(reason=reason):
            print(f"\n[Stopped] {reason}", file=sys.stderr)
        case Result(error=error) as result:
            print(file=sys.stderr)
            if error:
                print(f"[Error] {error}", file=sys.stderr)
            print(_summary(result), file=sys.stderr)
        case SystemEvent(type="remote_tools_unavailable", data=data):
            print(f"[Remote tools unavailable: {data.get('reason', '')}]", file=sys.stderr)
        case SystemEvent():
            pass  # Suppress other system events in basic output


# Palette
STYLE_TOOL_NAME = "bold #a78bfa"
STYLE_TOOL_DETAIL = "#7c7c8a"
STYLE_TOOL_BASH_CMD = "bold #e2e8f0"
STYLE_ERROR_LABEL = "bold #f87171"
STYLE_ERROR_BODY = "#f87171"
STYLE_RESULT_DIM = "dim #7c7c8a"
STYLE_WARNING = "bold #fbbf24"


class RichPrinter:
    """Rich-based message printer for terminal output."""

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console(stderr=True)
        self._stdout = Console()
        self._streaming = False

    def print_message(self, msg: Message) -> None:
        match msg:
            case TextMessage(text=t, is_partial=True):
                self._streaming = True
                self._stdout.print(t, end="", highlight=False, markup=False)

            case TextMessage(is_partial=False):
                if self._streaming:
                    self._stdout.print()
                    self._streaming = False

            case ToolUse(name=name, args=args):
                line = Text()
                line.append(f"  ▸ {name}", style=STYLE_TOOL_NAME)
                detail = tool_detail(name, args)
                if detail:
                    line.append("  ")
                    line.append(detail, style=STYLE_TOOL_BASH_CMD if name == "Bash"
                                else STYLE_TOOL_DETAIL)
                self._console.print(line)

            case ToolOutcome(content=content, is_error=is_error, display=display,
                             elapsed_ms=elapsed):
                self._print_outcome(display or content, is_error, elapsed)

            case LimitExceeded(reason=reason, tool_calls=calls, loop_depth=depth):
                self._console.print(Text(
                    f"  ! {reason} ({calls} calls, depth {depth})", style=STYLE_WARNING,
                ))

            case Result() as result:
                if result.error:
                    self._console.print(Text(f"  ✗ {result.error}", style=STYLE_ERROR_LABEL))
                self._console.print(Text(_summary(result), style=STYLE_RESULT_DIM))

            case SystemEvent(type="remote_tools_unavailable", data=data):
                self._console.print(Text(
                    f"  ! Remote tools unavailable: {data.get('reason', '')}",
                    style=STYLE_WARNING,
                ))

            case SystemEvent():
                pass

    def _print_outcome(self, show: str, is_error: bool, elapsed: float | None) -> None:
        if is_error:
            label = Text("    ✗ ", style=STYLE_ERROR_LABEL)
            label.append(show[:300], style=STYLE_ERROR_BODY)
            self._console.print(label)
            return
        first = show.strip().splitlines()[0] if show.strip() else ""
        line = Text("    ✓ ", style=STYLE_RESULT_DIM)
        line.append(first[:120], style=STYLE_RESULT_DIM)
        if elapsed is not None:
            line.append(f"  {elapsed:.0f}ms", style=STYLE_RESULT_DIM)
        self._console.print(line)
