"""AskUser tool — asks the user a question and waits for the answer."""

from __future__ import annotations

from typing import Any

from agentwire.errors import RendezvousClosed
from agentwire.tools.base import BaseTool
from agentwire.types.tools import ToolContext, ToolDef, ToolParam, ToolResult

NON_INTERACTIVE_ANSWER = "(no answer - non-interactive mode)"

_DEFINITION = ToolDef(
    name="AskUser",
    description=(
        "Ask the user a question when the request is genuinely ambiguous. "
        "Optionally offer a list of choices."
    ),
    parameters=(
        ToolParam(name="question", type="string", description="The question to ask."),
        ToolParam(
            name="options",
            type="array",
            description="Suggested answers the user can pick from.",
            required=False,
            items={"type": "string"},
        ),
    ),
)


class AskUserTool(BaseTool):
    @property
    def definition(self) -> ToolDef:
        return _DEFINITION

    async def execute(self, args: dict[str, Any], ctx: ToolContext) -> ToolResult:
        question = str(args.get("question") or "").strip()
        if not question:
            return self._error("question is required.")
        options = tuple(str(o) for o in args.get("options") or ())

        if ctx.interaction is None:
            return self._ok(NON_INTERACTIVE_ANSWER, answer=NON_INTERACTIVE_ANSWER)

        try:
            answer = await ctx.interaction.ask(ctx.tool_use_id, question, options)
        except RendezvousClosed:
            return self._error("The question was dismissed without an answer.", code="cancelled")
        return self._ok(answer, answer=answer)
