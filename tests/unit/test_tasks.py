"""Tests for the task registry (process table)."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

from agentwire.tasks.registry import CLEANUP_AGE, TaskInfo, TaskRegistry, TaskStatus

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell required")


class TestTable:
    def test_generated_ids_are_unique(self):
        registry = TaskRegistry(clock=lambda: 1_700_000_000.0)
        first, second = registry.generate_id(), registry.generate_id()
        assert first != second
        assert first.startswith("task_1_")
        assert second.startswith("task_2_")

    def test_lookups_and_update(self):
        registry = TaskRegistry()
        task = registry.register(TaskInfo(
            id="task_a", name="server", command="npm run dev", cwd="/", start_time=0.0,
            status=TaskStatus.RUNNING, pid=4242,
        ))
        assert registry.get("task_a") is task
        assert registry.get_by_pid(4242) is task
        assert registry.get_by_name("server") == [task]
        assert registry.get_running() == [task]
        registry.update("task_a", status=TaskStatus.COMPLETED, exit_code=0)
        assert registry.get_running() == []
        assert registry.update("missing", status=TaskStatus.FAILED) is None
        assert registry.remove("task_a")
        assert not registry.remove("task_a")

    def test_cleanup_removes_old_finished_tasks(self):
        registry = TaskRegistry()
        for task_id, status, end in (
            ("old", TaskStatus.COMPLETED, 0.0),
            ("recent", TaskStatus.FAILED, 200.0),
            ("running", TaskStatus.RUNNING, None),
        ):
            registry.register(TaskInfo(
                id=task_id, name=task_id, command="true", cwd="/", start_time=0.0,
                status=status, end_time=end,
            ))
        assert registry.cleanup(now=CLEANUP_AGE + 1) == 1
        assert {t.id for t in registry.get_all()} == {"recent", "running"}


class TestRunTask:
    @pytest.mark.asyncio
    async def test_foreground_captures_output(self, tmp_path: Path):
        registry = TaskRegistry()
        chunks: list[str] = []
        exits: list[int | None] = []
        task = await registry.run_task(
            "echo hello; echo oops 1>&2; exit 3",
            cwd=tmp_path, on_output=chunks.append, on_exit=exits.append,
        )
        assert task.status is TaskStatus.FAILED
        assert task.exit_code == 3
        assert "hello" in "".join(registry.get_output(task.id))
        assert "oops" in "".join(registry.get_errors(task.id))
        assert "hello" in "".join(chunks)
        assert exits == [3]
        await registry.close()

    @pytest.mark.asyncio
    async def test_success(self, tmp_path: Path):
        registry = TaskRegistry()
        task = await registry.run_task("pwd", cwd=tmp_path, name="where")
        assert task.status is TaskStatus.COMPLETED
        assert task.name == "where"
        assert str(tmp_path.resolve()) in "".join(registry.get_output(task.id))
        await registry.close()

    @pytest.mark.asyncio
    async def test_timeout_kills(self, tmp_path: Path):
        registry = TaskRegistry()
        task = await registry.run_task("sleep 10", cwd=tmp_path, timeout=0.3)
        assert task.status is TaskStatus.KILLED
        assert "timeout" in "".join(registry.get_errors(task.id))
        await registry.close()

    @pytest.mark.asyncio
    async def test_background_returns_early_and_can_be_killed(self, tmp_path: Path):
        registry = TaskRegistry()
        task = await registry.run_task("sleep 10", cwd=tmp_path, background=True)
        assert task.status is TaskStatus.RUNNING
        assert task.is_background
        health = registry.check_health(task.id)
        assert health.alive and health.responding

        assert registry.kill_task(task.id)
        await registry.wait(task.id, timeout=5)
        assert task.status is TaskStatus.KILLED
        assert task.finished
        assert not registry.kill_task(task.id)
        await registry.close()

    @pytest.mark.asyncio
    async def test_kill_by_name_and_pid(self, tmp_path: Path):
        registry = TaskRegistry()
        a = await registry.run_task("sleep 10", cwd=tmp_path, name="napper", background=True)
        b = await registry.run_task("sleep 10", cwd=tmp_path, name="napper", background=True)
        c = await registry.run_task("sleep 10", cwd=tmp_path, name="other", background=True)
        assert registry.kill_by_name("napper") == 2
        assert registry.kill_by_pid(c.pid)
        for task in (a, b, c):
            await registry.wait(task.id, timeout=5)
            assert task.status is TaskStatus.KILLED
        await registry.close()

    @pytest.mark.asyncio
    async def test_bad_cwd_fails_without_raising(self, tmp_path: Path):
        registry = TaskRegistry()
        task = await registry.run_task("echo hi", cwd=tmp_path / "missing")
        assert task.status is TaskStatus.FAILED
        assert registry.get_errors(task.id)
        await registry.close()

    @pytest.mark.asyncio
    async def test_health_reports_port_in_use(self, tmp_path: Path):
        registry = TaskRegistry()
        task = await registry.run_task(
            "echo 'Error: listen EADDRINUSE :::3000' 1>&2; sleep 10",
            cwd=tmp_path, background=True,
        )
        await asyncio.sleep(0.2)
        health = registry.check_health(task.id)
        assert health.alive
        assert not health.responding
        assert "Port already in use" in health.issues
        await registry.close()
        assert task.status is TaskStatus.KILLED

    @pytest.mark.asyncio
    async def test_health_of_finished_task(self, tmp_path: Path):
        registry = TaskRegistry()
        task = await registry.run_task("true", cwd=tmp_path)
        health = registry.check_health(task.id)
        assert not health.alive
        assert health.issues == ("Task is completed",)
        assert registry.check_health("nope").issues == ("Task not found",)
        await registry.close()

    @pytest.mark.asyncio
    async def test_start_and_close_gc(self):
        registry = TaskRegistry()
        registry.start()
        assert registry._gc_task is not None
        await registry.close()
        assert registry._gc_task is None
