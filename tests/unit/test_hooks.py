"""Tests for pre/post tool-execution hooks and their registry integration."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from agentwire.tools.hooks import (
    ALL_TOOLS,
    FileReadTracker,
    HookContext,
    HookRegistry,
    PreHookResult,
    add_error_hint,
    analyze_error,
    install_default_hooks,
    install_read_before_write,
)
from agentwire.tools.registry import ToolRegistry
from agentwire.types.tools import ToolContext, ToolResult


def _ctx(tmp_path: Path) -> ToolContext:
    return ToolContext(cwd=tmp_path, conversation_id="conv-1")


def _registry(**kwargs: Any) -> ToolRegistry:
    registry = ToolRegistry(**kwargs)
    registry.register_defaults()
    return registry


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class TestHookRegistry:
    @pytest.mark.asyncio
    async def test_global_pre_hooks_run_before_tool_hooks(self, tmp_path: Path):
        hooks = HookRegistry()
        order: list[str] = []

        async def global_hook(ctx: HookContext) -> None:
            order.append("global")

        async def read_hook(ctx: HookContext) -> None:
            order.append("read")

        hooks.register_pre("Read", read_hook)
        hooks.register_pre(ALL_TOOLS, global_hook)
        outcome = await hooks.run_pre(HookContext("Read", {"file_path": "a"}, tmp_path))
        assert order == ["global", "read"]
        assert outcome.proceed
        assert outcome.params == {"file_path": "a"}

    @pytest.mark.asyncio
    async def test_modified_params_flow_to_later_hooks(self, tmp_path: Path):
        hooks = HookRegistry()
        seen: list[dict[str, Any]] = []

        async def add_limit(ctx: HookContext) -> PreHookResult:
            return PreHookResult(params={**ctx.params, "limit": 5})

        async def observe(ctx: HookContext) -> None:
            seen.append(ctx.params)

        hooks.register_pre(ALL_TOOLS, add_limit)
        hooks.register_pre("Read", observe)
        original = {"file_path": "a"}
        outcome = await hooks.run_pre(HookContext("Read", original, tmp_path))
        assert seen == [{"file_path": "a", "limit": 5}]
        assert outcome.params == {"file_path": "a", "limit": 5}
        assert original == {"file_path": "a"}

    @pytest.mark.asyncio
    async def test_veto_stops_the_chain(self, tmp_path: Path):
        hooks = HookRegistry()
        calls: list[str] = []

        async def deny(ctx: HookContext) -> PreHookResult:
            calls.append("deny")
            return PreHookResult.deny("nope", "try again")

        async def never(ctx: HookContext) -> None:
            calls.append("never")

        hooks.register_pre("Bash", deny)
        hooks.register_pre("Bash", never)
        outcome = await hooks.run_pre(HookContext("Bash", {}, tmp_path))
        assert not outcome.proceed
        assert (outcome.error, outcome.suggestion) == ("nope", "try again")
        assert calls == ["deny"]

    @pytest.mark.asyncio
    async def test_post_hooks_tool_first_then_global(self, tmp_path: Path):
        hooks = HookRegistry()

        async def tag(ctx: HookContext, result: ToolResult) -> ToolResult:
            return ToolResult.ok(result.content + "+tool")

        async def tag_all(ctx: HookContext, result: ToolResult) -> ToolResult:
            return ToolResult.ok(result.content + "+all")

        hooks.register_post(ALL_TOOLS, tag_all)
        hooks.register_post("LS", tag)
        out = await hooks.run_post(HookContext("LS", {}, tmp_path), ToolResult.ok("x"))
        assert out.content == "x+tool+all"
        assert len(hooks) == 2


class TestRegistryHooks:
    @pytest.mark.asyncio
    async def test_pre_hook_veto_skips_tool(self, tmp_path: Path):
        registry = _registry()

        async def no_writes(ctx: HookContext) -> PreHookResult:
            return PreHookResult.deny("writes are frozen", "ask the user first")

        registry.hooks.register_pre("Write", no_writes)
        result = await registry.execute(
            "write_file", {"file_path": "a.txt", "content": "x"}, _ctx(tmp_path),
        )
        assert result.is_error
        assert result.error_code == "hook_denied"
        assert result.error == "writes are frozen"
        assert result.data["suggestion"] == "ask the user first"
        assert not (tmp_path / "a.txt").exists()

    @pytest.mark.asyncio
    async def test_pre_hook_rewrites_params(self, tmp_path: Path):
        (tmp_path / "real.txt").write_text("real\n")
        registry = _registry()

        async def redirect(ctx: HookContext) -> PreHookResult:
            return PreHookResult(params={**ctx.params, "file_path": "real.txt"})

        registry.hooks.register_pre("Read", redirect)
        result = await registry.execute("Read", {"file_path": "decoy.txt"}, _ctx(tmp_path))
        assert result.success
        assert "real" in result.content

    @pytest.mark.asyncio
    async def test_post_hook_amends_result(self, tmp_path: Path):
        registry = _registry()
        seen: list[str] = []

        async def stamp(ctx: HookContext, result: ToolResult) -> ToolResult:
            seen.append(ctx.conversation_id or "")
            result.data["checked"] = True
            return result

        registry.hooks.register_post("LS", stamp)
        result = await registry.execute("list_directory", {}, _ctx(tmp_path))
        assert result.data["checked"] is True
        assert seen == ["conv-1"]

    @pytest.mark.asyncio
    async def test_raising_hook_reported_as_handler_exception(self, tmp_path: Path):
        registry = _registry()

        async def broken(ctx: HookContext) -> None:
            raise RuntimeError("hook blew up")

        registry.hooks.register_pre(ALL_TOOLS, broken)
        result = await registry.execute("LS", {}, _ctx(tmp_path))
        assert result.error_code == "handler_exception"
        assert "hook blew up" in result.error

    @pytest.mark.asyncio
    async def test_filtered_registry_shares_hooks(self, tmp_path: Path):
        registry = _registry()
        filtered = registry.filter(["LS"])
        assert filtered.hooks is registry.hooks


class TestReadBeforeWrite:
    @pytest.fixture
    def guarded(self) -> tuple[ToolRegistry, FileReadTracker, _Clock]:
        registry = _registry()
        clock = _Clock()
        tracker = FileReadTracker(ttl=30.0, clock=clock)
        install_read_before_write(registry.hooks, tracker)
        return registry, tracker, clock

    @pytest.mark.asyncio
    async def test_edit_requires_read(self, tmp_path: Path, guarded):
        registry, _, _ = guarded
        (tmp_path / "a.py").write_text("x = 1\n")
        params = {"file_path": "a.py", "old_string": "1", "new_string": "2"}

        denied = await registry.execute("Edit", params, _ctx(tmp_path))
        assert denied.error_code == "hook_denied"
        assert "must be read before editing" in denied.error

        assert (await registry.execute("Read", {"file_path": "a.py"}, _ctx(tmp_path))).success
        edited = await registry.execute("Edit", params, _ctx(tmp_path))
        assert edited.success
        assert (tmp_path / "a.py").read_text() == "x = 2\n"

    @pytest.mark.asyncio
    async def test_new_file_write_allowed(self, tmp_path: Path, guarded):
        registry, _, _ = guarded
        result = await registry.execute(
            "Write", {"file_path": "new.txt", "content": "hi"}, _ctx(tmp_path),
        )
        assert result.success

    @pytest.mark.asyncio
    async def test_overwrite_requires_read(self, tmp_path: Path, guarded):
        registry, _, _ = guarded
        (tmp_path / "old.txt").write_text("old")
        result = await registry.execute(
            "Write", {"file_path": str(tmp_path / "old.txt"), "content": "new"}, _ctx(tmp_path),
        )
        assert result.error_code == "hook_denied"
        assert (tmp_path / "old.txt").read_text() == "old"

    @pytest.mark.asyncio
    async def test_read_expires(self, tmp_path: Path, guarded):
        registry, tracker, clock = guarded
        (tmp_path / "a.py").write_text("x = 1\n")
        await registry.execute("read_file", {"file_path": "a.py"}, _ctx(tmp_path))
        assert tracker.recently_read(str(tmp_path / "a.py"), tmp_path)
        clock.now += 31
        assert not tracker.recently_read("a.py", tmp_path)

    def test_default_install_is_opt_in(self):
        hooks = HookRegistry()
        assert install_default_hooks(hooks) is None
        assert len(hooks) == 1
        tracker = install_default_hooks(HookRegistry(), read_before_write=True)
        assert isinstance(tracker, FileReadTracker)


class TestErrorHints:
    def test_patterns(self):
        assert analyze_error("File not found: /x").error_type == "recoverable"
        assert analyze_error("Permission denied: /etc/shadow").error_type == "fatal"
        assert analyze_error("old_string appears 3 times in a.py").suggestion.startswith(
            "Add more surrounding context")
        assert analyze_error("something odd") is None

    @pytest.mark.asyncio
    async def test_hint_attached_to_failures_only(self, tmp_path: Path):
        ctx = HookContext("Read", {}, tmp_path)
        failed = await add_error_hint(ctx, ToolResult.fail("File not found: a", code="x"))
        assert failed is not None
        assert failed.data["error_type"] == "recoverable"
        assert "Glob" in failed.data["suggestion"]
        assert await add_error_hint(ctx, ToolResult.ok("fine")) is None
        assert await add_error_hint(ctx, ToolResult.fail("weird", code="x")) is None

    @pytest.mark.asyncio
    async def test_hint_through_registry(self, tmp_path: Path):
        registry = _registry()
        install_default_hooks(registry.hooks)
        result = await registry.execute("Read", {"file_path": "missing.txt"}, _ctx(tmp_path))
        assert result.is_error
        assert result.data["suggestion"].startswith("Verify the file path exists")
