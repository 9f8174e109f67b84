"""Context management — keeps the outbound history under size budgets.

Two independent mechanisms:

1. Client-side truncation of tool inputs and results, applied to a deep copy
   of the history right before each request. The canonical history is never
   touched, so truncation can be recomputed from scratch every turn.
2. A declarative server-side policy asking the model API to clear old tool
   uses once the prompt grows past a token threshold.
"""

from __future__ import annotations

import copy
import json
import logging
import time
from collections.abc import Callable
from typing import Any

from agentwire.context.store import OutputStore
from agentwire.types.config import ContextBudget, ServerContextPolicy
from agentwire.types.messages import ChatMessage

logger = logging.getLogger(__name__)

_SUMMARY_CHARS = 500


def _input_placeholder(value: str) -> str:
    return f"[{len(value)} chars, {value.count(chr(10)) + 1} lines, truncated]"


def _cut_marker(original_length: int) -> str:
    return f"\n... [truncated, {original_length} total chars]"


def _json_summary(content: str) -> str | None:
    """Collapse a JSON tool payload carrying ``success`` to a short summary."""
    try:
        parsed = json.loads(content)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(parsed, dict) or "success" not in parsed:
        return None

    summary = parsed.get("message") or parsed.get("summary") or parsed.get("error")
    if not isinstance(summary, str) or not summary:
        data = parsed.get("data")
        if isinstance(data, list):
            summary = f"{len(data)} items"
        else:
            summary = f"Result with keys: {', '.join(k for k in parsed if k != 'success')}"
    if len(summary) > _SUMMARY_CHARS:
        summary = summary[:_SUMMARY_CHARS] + "..."

    return json.dumps({
        "success": parsed["success"],
        "summary": summary,
        "_truncated": True,
        "_original_length": len(content),
    })


class ContextManager:
    """Applies a ``ContextBudget`` to outbound copies of the history.

    ``resolve_name`` maps the name a tool_use block carries (an alias or a
    case variant) to the registered tool name before the preserve and
    input-truncation sets are consulted.
    """

    def __init__(
        self,
        budget: ContextBudget | None = None,
        *,
        store: OutputStore | None = None,
        server_policy: ServerContextPolicy | None = None,
        resolve_name: Callable[[str], str | None] | None = None,
    ) -> None:
        self._budget = budget or ContextBudget()
        self._store = store or OutputStore(self._budget.output_dir)
        self._server_policy = server_policy or ServerContextPolicy()
        self._resolve_name = resolve_name

    @property
    def budget(self) -> ContextBudget:
        return self._budget

    @property
    def store(self) -> OutputStore:
        return self._store

    def _canonical(self, tool_name: str) -> str:
        if self._resolve_name is None:
            return tool_name
        return self._resolve_name(tool_name) or tool_name

    # -- Tool inputs ------------------------------------------------------

    def truncate_tool_input(self, tool_name: str, tool_input: dict[str, Any]) -> dict[str, Any]:
        """Replace oversized payload fields of file-writing tools with a placeholder.

        Returns ``tool_input`` itself when nothing needed truncating, else a
        new dict. Never mutates the argument.
        """
        budget = self._budget
        if not isinstance(tool_input, dict):
            return tool_input
        if self._canonical(tool_name) not in budget.truncate_input_tools:
            return tool_input

        out: dict[str, Any] | None = None
        for field_name in budget.truncate_input_fields:
            value = tool_input.get(field_name)
            if isinstance(value, str) and len(value) > budget.max_tool_input_chars:
                if out is None:
                    out = dict(tool_input)
                out[field_name] = _input_placeholder(value)
                out[f"_original_{field_name}_length"] = len(value)
        return tool_input if out is None else out

    # -- Tool results -----------------------------------------------------

    def truncate_tool_result(
        self, tool_name: str, content: str, tool_use_id: str | None = None,
    ) -> str:
        """Bound one tool_result string. Idempotent."""
        budget = self._budget

        if self._canonical(tool_name) in budget.preserve_tools:
            if len(content) <= budget.max_tool_output_chars:
                return content
            key = tool_use_id or f"{tool_name}_{int(time.time() * 1000)}"
            try:
                path = self._store.persist(key, tool_name, content)
            except OSError as exc:
                logger.error("Could not persist %s output: %s", tool_name, exc)
                marker = _cut_marker(len(content))
                return content[: budget.max_tool_output_chars - len(marker)] + marker
            preview = content[: budget.max_inline_chars]
            return (
                f"{preview}\n\n... [Output truncated - full content saved to {path}] "
                f"({len(content)} total chars)"
            )

        if len(content) <= budget.max_inline_chars:
            return content

        summary = _json_summary(content)
        if summary is not None:
            return summary

        marker = _cut_marker(len(content))
        return content[: budget.max_inline_chars - len(marker)] + marker

    # -- History ----------------------------------------------------------

    def prepare_history(self, history: list[ChatMessage]) -> list[ChatMessage]:
        """Return a truncated deep copy of ``history`` for the next request."""
        tool_names: dict[str, str] = {}
        prepared: list[ChatMessage] = []

        for msg in history:
            if isinstance(msg.content, str):
                prepared.append(ChatMessage(role=msg.role, content=msg.content))
                continue

            blocks: list[dict[str, Any]] = []
            for original in msg.content:
                block = copy.deepcopy(original)
                match block.get("type"):
                    case "tool_use":
                        name = block.get("name", "")
                        tool_names[block.get("id", "")] = name
                        block["input"] = self.truncate_tool_input(name, block.get("input") or {})
                    case "tool_result" if isinstance(block.get("content"), str):
                        tool_use_id = block.get("tool_use_id", "")
                        block["content"] = self.truncate_tool_result(
                            tool_names.get(tool_use_id, ""), block["content"], tool_use_id,
                        )
                blocks.append(block)
            prepared.append(ChatMessage(role=msg.role, content=blocks))

        return prepared

    # -- Server-side policy -----------------------------------------------

    def server_side_config(self) -> dict[str, Any] | None:
        """The ``context_management`` body field, or None when disabled."""
        policy = self._server_policy
        if not policy.enabled:
            return None
        edit: dict[str, Any] = {
            "type": "clear_tool_uses_20250919",
            "trigger": {"type": "input_tokens", "value": policy.trigger_input_tokens},
            "keep": {"type": "tool_uses", "value": policy.keep_tool_uses},
            "clear_tool_inputs": policy.clear_tool_inputs,
            "exclude_tools": list(policy.exclude_tools),
        }
        if policy.clear_at_least_tokens is not None:
            edit["clear_at_least"] = {"type": "input_tokens", "value": policy.clear_at_least_tokens}
        return {"edits": [edit]}

    def close(self) -> None:
        self._store.cleanup()
