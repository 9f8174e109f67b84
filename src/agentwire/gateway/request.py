"""GatewayRequest — the body the client POSTs to ``/agentic-loop``."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, Field, StrictInt, field_validator, model_validator

DEFAULT_SYSTEM_PROMPT = """\
You are a software engineering assistant working in the user's terminal.
Use the available tools to inspect and change the project. Be concise and
let tool calls do the work."""

_ROLES = ("user", "assistant", "system")


class GatewayRequest(BaseModel):
    """One turn. ``history`` is the complete outbound conversation.

    ``message`` is the user's prompt for this run; it is only turned into a
    history entry when ``history`` is empty.
    """

    message: str = Field("", description="Prompt for this run")
    history: list[dict[str, Any]] = Field(default_factory=list)
    tools: list[dict[str, Any]] = Field(
        default_factory=list,
        validation_alias=AliasChoices("local_tools", "tools"),
        description="Tool schemas advertised to the model",
    )
    provider: str = "anthropic"
    model: str | None = None
    system_prompt: str = ""
    working_directory: str | None = None
    platform: str | None = None
    client: str = "cli"
    format_hint: str | None = None
    tool_call_count: StrictInt | None = None
    loop_depth: StrictInt | None = None
    context_management: dict[str, Any] | None = None
    project_context: str | None = None

    @field_validator("message", "system_prompt", mode="before")
    @classmethod
    def _empty_string(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("history", "tools", mode="before")
    @classmethod
    def _empty_list(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("provider", mode="before")
    @classmethod
    def _normalize_provider(cls, value: Any) -> str:
        return str(value or "anthropic").lower()

    @field_validator("client", mode="before")
    @classmethod
    def _default_client(cls, value: Any) -> Any:
        return value or "cli"

    @field_validator("model", mode="before")
    @classmethod
    def _blank_model(cls, value: Any) -> Any:
        return value or None

    @field_validator("history")
    @classmethod
    def _check_roles(cls, history: list[dict[str, Any]]) -> list[dict[str, Any]]:
        for entry in history:
            if entry.get("role") not in _ROLES:
                raise ValueError("'history' must be a list of {role, content} objects")
        return history

    @field_validator("tools")
    @classmethod
    def _check_tool_names(cls, tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if not all(t.get("name") for t in tools):
            raise ValueError("'local_tools' must be a list of tool schemas with a name")
        return tools

    @model_validator(mode="after")
    def _require_prompt(self) -> GatewayRequest:
        if not self.message and not self.history:
            raise ValueError("Either 'message' or 'history' is required")
        return self

    @classmethod
    def from_payload(cls, payload: Any) -> GatewayRequest:
        """Validate a decoded JSON body. Raises ``pydantic.ValidationError``."""
        return cls.model_validate(payload)

    def messages(self) -> list[dict[str, Any]]:
        if self.history:
            return list(self.history)
        return [{"role": "user", "content": self.message}]

    def compose_system_prompt(self) -> str:
        parts = [self.system_prompt or DEFAULT_SYSTEM_PROMPT]
        parts.append(
            f"Working directory: {self.working_directory or 'unknown'}\n"
            f"Platform: {self.platform or 'unknown'}"
        )
        if self.format_hint == "terminal":
            parts.append("Output is rendered in a terminal; keep formatting simple.")
        if self.project_context:
            parts.append(f"Project context:\n{self.project_context}")
        return "\n\n".join(parts)
