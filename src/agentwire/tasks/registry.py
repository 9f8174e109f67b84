"""TaskRegistry — process table for shell commands started by tools.

Every command the Bash tool runs goes through here, foreground or
background, so the model can later inspect output, check health or kill
it. Entries outlive the turn that created them; finished entries are
garbage-collected five minutes after they end.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import re
import signal
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

CLEANUP_AGE = 300.0  # seconds after end_time
CLEANUP_INTERVAL = 60.0
BACKGROUND_GRACE = 0.1
KILL_GRACE = 2.0

_ERROR_PATTERN = re.compile(r"error|exception|fatal|crash|traceback", re.IGNORECASE)
_PORT_IN_USE = re.compile(r"EADDRINUSE|address already in use", re.IGNORECASE)

OutputCallback = Callable[[str], Any]
ExitCallback = Callable[[int | None], Any]


class TaskStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    KILLED = "killed"


_FINISHED = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.KILLED})


def _base36(n: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while True:
        n, r = divmod(n, 36)
        out = digits[r] + out
        if n == 0:
            return out


@dataclass(slots=True)
class TaskInfo:
    id: str
    name: str
    command: str
    cwd: str
    start_time: float
    status: TaskStatus = TaskStatus.PENDING
    is_background: bool = False
    pid: int | None = None
    end_time: float | None = None
    exit_code: int | None = None
    output: deque[str] = field(default_factory=deque)
    errors: deque[str] = field(default_factory=deque)

    @property
    def finished(self) -> bool:
        return self.status in _FINISHED

    @property
    def runtime(self) -> float:
        return (self.end_time or time.time()) - self.start_time

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "command": self.command,
            "status": self.status.value,
            "pid": self.pid,
            "exit_code": self.exit_code,
            "background": self.is_background,
            "runtime_s": round(self.runtime, 1),
        }


@dataclass(frozen=True, slots=True)
class TaskHealth:
    alive: bool
    responding: bool
    issues: tuple[str, ...] = ()


class TaskRegistry:
    """Owns every ``TaskInfo`` and its process handle."""

    def __init__(self, *, max_buffer_chunks: int = 1000, clock: Callable[[], float] = time.time) -> None:
        self._tasks: dict[str, TaskInfo] = {}
        self._processes: dict[str, asyncio.subprocess.Process] = {}
        self._watchers: dict[str, asyncio.Task[None]] = {}
        self._counter = 0
        self._max_chunks = max_buffer_chunks
        self._clock = clock
        self._gc_task: asyncio.Task[None] | None = None

    # -- Table ------------------------------------------------------------

    def generate_id(self) -> str:
        self._counter += 1
        return f"task_{self._counter}_{_base36(int(self._clock() * 1000))}"

    def register(self, task: TaskInfo) -> TaskInfo:
        self._tasks[task.id] = task
        return task

    def get(self, task_id: str) -> TaskInfo | None:
        return self._tasks.get(task_id)

    def get_by_pid(self, pid: int) -> TaskInfo | None:
        return next((t for t in self._tasks.values() if t.pid == pid), None)

    def get_by_name(self, name: str) -> list[TaskInfo]:
        return [t for t in self._tasks.values() if t.name == name]

    def get_running(self) -> list[TaskInfo]:
        return [t for t in self._tasks.values() if t.status == TaskStatus.RUNNING]

    def get_all(self) -> list[TaskInfo]:
        return list(self._tasks.values())

    def update(self, task_id: str, **changes: Any) -> TaskInfo | None:
        task = self._tasks.get(task_id)
        if task is None:
            return None
        for key, value in changes.items():
            setattr(task, key, value)
        return task

    def remove(self, task_id: str) -> bool:
        self._processes.pop(task_id, None)
        self._watchers.pop(task_id, None)
        return self._tasks.pop(task_id, None) is not None

    def cleanup(self, now: float | None = None) -> int:
        """Drop finished tasks that ended more than ``CLEANUP_AGE`` ago."""
        now = self._clock() if now is None else now
        stale = [
            t.id for t in self._tasks.values()
            if t.finished and t.end_time is not None and now - t.end_time > CLEANUP_AGE
        ]
        for task_id in stale:
            self.remove(task_id)
        if stale:
            logger.debug("Cleaned up %d finished tasks", len(stale))
        return len(stale)

    # -- Lifecycle --------------------------------------------------------

    def start(self) -> None:
        """Begin periodic cleanup. Requires a running event loop."""
        if self._gc_task is None or self._gc_task.done():
            self._gc_task = asyncio.get_running_loop().create_task(self._gc_loop())

    async def _gc_loop(self) -> None:
        while True:
            await asyncio.sleep(CLEANUP_INTERVAL)
            self.cleanup()

    async def close(self) -> None:
        """Stop cleanup and terminate everything still running."""
        if self._gc_task is not None:
            self._gc_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._gc_task
            self._gc_task = None
        for task in self.get_running():
            self.kill_task(task.id)
        watchers = [w for w in self._watchers.values() if not w.done()]
        if watchers:
            await asyncio.wait(watchers, timeout=KILL_GRACE * 2)

    # -- Running ----------------------------------------------------------

    async def run_task(
        self,
        command: str,
        *,
        name: str | None = None,
        cwd: str | os.PathLike[str] | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
        background: bool = False,
        on_output: OutputCallback | None = None,
        on_error: OutputCallback | None = None,
        on_exit: ExitCallback | None = None,
    ) -> TaskInfo:
        """Spawn ``command`` in a shell and track it.

        Foreground calls return once the process exits (or is killed by the
        timeout). Background calls return after a short grace period so an
        immediate failure is already visible in the returned info.
        """
        task = self.register(TaskInfo(
            id=self.generate_id(),
            name=name or (command.split() or ["task"])[0],
            command=command,
            cwd=str(cwd or os.getcwd()),
            start_time=self._clock(),
            is_background=background,
            output=deque(maxlen=self._max_chunks),
            errors=deque(maxlen=self._max_chunks),
        ))

        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=task.cwd,
                env={**os.environ, **(env or {})},
                start_new_session=True,
            )
        except OSError as exc:
            task.errors.append(str(exc))
            self.update(task.id, status=TaskStatus.FAILED, end_time=self._clock())
            logger.warning("Failed to start task %s: %s", task.id, exc)
            return task

        self._processes[task.id] = proc
        self.update(task.id, pid=proc.pid, status=TaskStatus.RUNNING)
        logger.debug("Started %s (pid %s): %s", task.id, proc.pid, command)

        watcher = asyncio.get_running_loop().create_task(
            self._watch(task, proc, timeout, on_output, on_error, on_exit)
        )
        self._watchers[task.id] = watcher

        if background:
            await asyncio.wait({watcher}, timeout=BACKGROUND_GRACE)
        else:
            # The process belongs to the registry, not to the awaiting turn.
            await asyncio.shield(watcher)
        return task

    async def _watch(
        self,
        task: TaskInfo,
        proc: asyncio.subprocess.Process,
        timeout: float | None,
        on_output: OutputCallback | None,
        on_error: OutputCallback | None,
        on_exit: ExitCallback | None,
    ) -> None:
        assert proc.stdout is not None and proc.stderr is not None
        try:
            async with asyncio.timeout(timeout):
                await asyncio.gather(
                    self._pump(task.id, proc.stdout, task.output, on_output),
                    self._pump(task.id, proc.stderr, task.errors, on_error),
                    proc.wait(),
                )
        except TimeoutError:
            logger.info("Task %s exceeded %ss, killing", task.id, timeout)
            task.errors.append(f"\n[Killed after {timeout:g}s timeout]")
            task.status = TaskStatus.KILLED
            await self._terminate(proc)

        if task.status != TaskStatus.KILLED:
            task.status = TaskStatus.COMPLETED if proc.returncode == 0 else TaskStatus.FAILED
        task.exit_code = proc.returncode
        task.end_time = self._clock()
        self._processes.pop(task.id, None)
        if on_exit is not None:
            self._invoke(on_exit, proc.returncode, task.id)

    async def _pump(
        self,
        task_id: str,
        stream: asyncio.StreamReader,
        buffer: deque[str],
        callback: OutputCallback | None,
    ) -> None:
        while chunk := await stream.read(4096):
            text = chunk.decode("utf-8", errors="replace")
            buffer.append(text)
            if callback is not None:
                self._invoke(callback, text, task_id)

    @staticmethod
    def _invoke(callback: Callable[[Any], Any], arg: Any, task_id: str) -> None:
        try:
            callback(arg)
        except Exception:  # noqa: BLE001
            logger.warning("Callback for %s raised", task_id, exc_info=True)

    @staticmethod
    def _signal(proc: asyncio.subprocess.Process, sig: int) -> bool:
        try:
            if hasattr(os, "killpg"):
                os.killpg(proc.pid, sig)
            else:
                proc.send_signal(sig)
        except (ProcessLookupError, PermissionError):
            return False
        return True

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        self._signal(proc, signal.SIGTERM)
        try:
            await asyncio.wait_for(proc.wait(), timeout=KILL_GRACE)
        except TimeoutError:
            self._signal(proc, getattr(signal, "SIGKILL", signal.SIGTERM))
            await proc.wait()

    # -- Killing ----------------------------------------------------------

    def kill_task(self, task_id: str, sig: int = signal.SIGTERM) -> bool:
        task = self._tasks.get(task_id)
        proc = self._processes.get(task_id)
        if task is None or proc is None or task.finished:
            return False
        task.status = TaskStatus.KILLED
        sent = self._signal(proc, sig)
        watcher = self._watchers.get(task_id)
        if sent and watcher is not None and sig != getattr(signal, "SIGKILL", None):
            asyncio.get_running_loop().call_later(KILL_GRACE, self._escalate, task_id)
        return sent

    def _escalate(self, task_id: str) -> None:
        proc = self._processes.get(task_id)
        if proc is not None and proc.returncode is None:
            self._signal(proc, getattr(signal, "SIGKILL", signal.SIGTERM))

    def kill_by_name(self, name: str) -> int:
        return sum(self.kill_task(t.id) for t in self.get_by_name(name))

    def kill_by_pid(self, pid: int) -> bool:
        task = self.get_by_pid(pid)
        return self.kill_task(task.id) if task else False

    async def wait(self, task_id: str, timeout: float | None = None) -> TaskInfo | None:
        """Wait for a task's process to finish."""
        watcher = self._watchers.get(task_id)
        if watcher is not None:
            await asyncio.wait({watcher}, timeout=timeout)
        return self._tasks.get(task_id)

    # -- Inspection -------------------------------------------------------

    def get_output(self, task_id: str, tail: int | None = None) -> list[str]:
        task = self._tasks.get(task_id)
        if task is None:
            return []
        chunks = list(task.output)
        return chunks[-tail:] if tail else chunks

    def get_errors(self, task_id: str, tail: int | None = None) -> list[str]:
        task = self._tasks.get(task_id)
        if task is None:
            return []
        chunks = list(task.errors)
        return chunks[-tail:] if tail else chunks

    def check_health(self, task_id: str) -> TaskHealth:
        task = self._tasks.get(task_id)
        if task is None:
            return TaskHealth(alive=False, responding=False, issues=("Task not found",))

        issues: list[str] = []
        alive = False
        if task.pid is not None and not task.finished:
            try:
                os.kill(task.pid, 0)
                alive = True
            except ProcessLookupError:
                issues.append("Process is not running")
            except PermissionError:
                alive = True  # exists, owned by someone else
        else:
            issues.append(f"Task is {task.status.value}")

        recent = "".join(self.get_errors(task_id, tail=10))
        if _PORT_IN_USE.search(recent):
            issues.append("Port already in use")
        elif _ERROR_PATTERN.search(recent):
            issues.append("Recent errors detected")

        return TaskHealth(alive=alive, responding=alive and not issues, issues=tuple(issues))
