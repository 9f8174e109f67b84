"""Upstream request builders, one variant per model provider.

Each variant turns a ``GatewayRequest`` into the provider's native HTTP
request: role mapping, content-block formatting and tool-schema renaming.
Tool schemas are de-duplicated by case-insensitive name first (the client
lists local tools before remote ones, so local definitions win).
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, assert_never

from agentwire.errors import MissingCredentials, UnsupportedProvider
from agentwire.gateway.request import GatewayRequest
from agentwire.types.tools import dedupe_schemas


class Provider(Enum):
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    OPENAI = "openai"

    @classmethod
    def parse(cls, value: str) -> Provider:
        try:
            return cls(value.lower())
        except ValueError:
            raise UnsupportedProvider(value) from None


@dataclass(frozen=True, slots=True)
class UpstreamRequest:
    provider: Provider
    model: str
    url: str
    headers: dict[str, str]
    body: dict[str, Any]


def _credential(env_vars: tuple[str, ...], provider: Provider,
                credentials: Mapping[str, str] | None) -> str:
    source = os.environ if credentials is None else credentials
    for name in env_vars:
        if source.get(name):
            return source[name]
    raise MissingCredentials(provider.value, env_vars)


def _text_of(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            str(b.get("text", "")) for b in content
            if isinstance(b, dict) and b.get("type") == "text"
        )
    return json.dumps(content)


def _blocks(content: Any) -> list[dict[str, Any]]:
    if isinstance(content, str):
        return [{"type": "text", "text": content}] if content else []
    return [b for b in content or [] if isinstance(b, dict)]


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class AnthropicUpstream:
    base_url: str = "https://api.anthropic.com/v1/messages"
    default_model: str = "claude-sonnet-4-20250514"
    api_version: str = "2023-06-01"
    max_tokens: int = 8192
    env_vars: tuple[str, ...] = ("ANTHROPIC_API_KEY",)

    def build_request(self, request: GatewayRequest,
                      credentials: Mapping[str, str] | None = None) -> UpstreamRequest:
        key = _credential(self.env_vars, Provider.ANTHROPIC, credentials)
        model = request.model or self.default_model
        messages = [
            {"role": m["role"], "content": m.get("content", "")}
            for m in request.messages() if m.get("role") != "system"
        ]
        body: dict[str, Any] = {
            "model": model,
            "max_tokens": self.max_tokens,
            "system": request.compose_system_prompt(),
            "messages": messages,
            "stream": True,
        }
        tools = [
            {
                "name": t["name"],
                "description": t.get("description", ""),
                "input_schema": t.get("parameters") or t.get("input_schema")
                or {"type": "object", "properties": {}},
            }
            for t in dedupe_schemas(request.tools)
        ]
        if tools:
            body["tools"] = tools

        headers = {
            "x-api-key": key,
            "anthropic-version": self.api_version,
            "content-type": "application/json",
        }
        if request.context_management:
            body["context_management"] = request.context_management
            headers["anthropic-beta"] = "context-management-2025-06-27"
        return UpstreamRequest(Provider.ANTHROPIC, model, self.base_url, headers, body)


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class GeminiUpstream:
    base_url: str = "https://generativelanguage.googleapis.com/v1beta/models"
    default_model: str = "gemini-2.0-flash"
    max_tokens: int = 8192
    env_vars: tuple[str, ...] = ("GEMINI_API_KEY", "GOOGLE_API_KEY")

    def build_request(self, request: GatewayRequest,
                      credentials: Mapping[str, str] | None = None) -> UpstreamRequest:
        key = _credential(self.env_vars, Provider.GEMINI, credentials)
        model = request.model or self.default_model
        tool_names: dict[str, str] = {}
        contents: list[dict[str, Any]] = []

        for msg in request.messages():
            if msg.get("role") == "system":
                continue
            role = "model" if msg.get("role") == "assistant" else "user"
            parts: list[dict[str, Any]] = []
            for block in _blocks(msg.get("content")):
                match block.get("type"):
                    case "text" if block.get("text"):
                        parts.append({"text": block["text"]})
                    case "tool_use":
                        tool_names[block.get("id", "")] = block.get("name", "")
                        parts.append({"functionCall": {
                            "name": block.get("name", ""),
                            "args": block.get("input") or {},
                        }})
                    case "tool_result":
                        tool_use_id = block.get("tool_use_id", "")
                        parts.append({"functionResponse": {
                            "name": tool_names.get(tool_use_id) or tool_use_id.split("_")[0],
                            "response": {"content": _text_of(block.get("content"))},
                        }})
            if parts:
                contents.append({"role": role, "parts": parts})

        body: dict[str, Any] = {
            "contents": contents,
            "systemInstruction": {"parts": [{"text": request.compose_system_prompt()}]},
            "generationConfig": {"maxOutputTokens": self.max_tokens},
        }
        declarations = [
            {
                "name": t["name"],
                "description": t.get("description", ""),
                "parameters": t.get("parameters") or {"type": "object", "properties": {}},
            }
            for t in dedupe_schemas(request.tools)
        ]
        if declarations:
            body["tools"] = [{"functionDeclarations": declarations}]

        url = f"{self.base_url}/{model}:streamGenerateContent?alt=sse"
        headers = {"x-goog-api-key": key, "content-type": "application/json"}
        return UpstreamRequest(Provider.GEMINI, model, url, headers, body)


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class OpenAIUpstream:
    base_url: str = "https://api.openai.com/v1/chat/completions"
    default_model: str = "gpt-4o"
    max_tokens: int = 4096
    env_vars: tuple[str, ...] = ("OPENAI_API_KEY",)

    def build_request(self, request: GatewayRequest,
                      credentials: Mapping[str, str] | None = None) -> UpstreamRequest:
        key = _credential(self.env_vars, Provider.OPENAI, credentials)
        model = request.model or self.default_model
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": request.compose_system_prompt()},
        ]

        for msg in request.messages():
            role = msg.get("role")
            if role == "system":
                continue
            content = msg.get("content")
            if isinstance(content, str):
                messages.append({"role": role, "content": content})
                continue

            blocks = _blocks(content)
            text = "\n".join(b.get("text", "") for b in blocks if b.get("type") == "text")
            if role == "assistant":
                calls = [
                    {
                        "id": b.get("id", ""),
                        "type": "function",
                        "function": {
                            "name": b.get("name", ""),
                            "arguments": json.dumps(b.get("input") or {}),
                        },
                    }
                    for b in blocks if b.get("type") == "tool_use"
                ]
                entry: dict[str, Any] = {"role": "assistant", "content": text or None}
                if calls:
                    entry["tool_calls"] = calls
                messages.append(entry)
                continue

            for b in blocks:
                if b.get("type") == "tool_result":
                    messages.append({
                        "role": "tool",
                        "tool_call_id": b.get("tool_use_id", ""),
                        "content": _text_of(b.get("content")),
                    })
            if text:
                messages.append({"role": "user", "content": text})

        body: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": self.max_tokens,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        tools = [
            {
                "type": "function",
                "function": {
                    "name": t["name"],
                    "description": t.get("description", ""),
                    "parameters": t.get("parameters") or {"type": "object", "properties": {}},
                },
            }
            for t in dedupe_schemas(request.tools)
        ]
        if tools:
            body["tools"] = tools

        headers = {"authorization": f"Bearer {key}", "content-type": "application/json"}
        return UpstreamRequest(Provider.OPENAI, model, self.base_url, headers, body)


Upstream = AnthropicUpstream | GeminiUpstream | OpenAIUpstream


def default_upstream(provider: Provider) -> Upstream:
    match provider:
        case Provider.ANTHROPIC:
            return AnthropicUpstream()
        case Provider.GEMINI:
            return GeminiUpstream()
        case Provider.OPENAI:
            return OpenAIUpstream()
        case _:
            assert_never(provider)
