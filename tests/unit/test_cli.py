"""Tests for the click CLI."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
from click.testing import CliRunner

from agentwire import __version__
from agentwire.cli.main import cli


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def test_version(runner: CliRunner):
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_tools_lists_local_tools(runner: CliRunner, tmp_path: Path):
    result = runner.invoke(cli, ["--cwd", str(tmp_path), "tools", "--no-remote"])
    assert result.exit_code == 0, result.output
    assert "Local tools:" in result.output
    for name in ("Read", "Bash", "TaskStatus"):
        assert name in result.output
    assert "Remote tools" not in result.output


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell required")
class TestTasksRun:
    def test_success(self, runner: CliRunner, tmp_path: Path):
        result = runner.invoke(cli, ["--cwd", str(tmp_path), "tasks", "run", "echo hi"])
        assert result.exit_code == 0
        assert "hi" in result.output

    def test_exit_code_propagated(self, runner: CliRunner, tmp_path: Path):
        result = runner.invoke(cli, ["--cwd", str(tmp_path), "tasks", "run", "exit 3"])
        assert result.exit_code == 3
