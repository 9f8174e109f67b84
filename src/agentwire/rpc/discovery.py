"""Locate the tool provider executable and decide how to launch it."""

from __future__ import annotations

import os
import shutil
import sys
from pathlib import Path

PROVIDER_PATH_ENV = "AGENTWIRE_TOOL_PROVIDER_PATH"

_ENTRY_NAMES = ("index.js", "server.py", "main")


def candidate_paths(home: Path | None = None, cwd: Path | None = None) -> list[Path]:
    """User-install locations first, then the dev-relative checkout."""
    home = home or Path.home()
    cwd = cwd or Path.cwd()
    bases = [
        home / ".agentwire" / "tool-provider",
        home / ".local" / "share" / "agentwire" / "tool-provider",
        cwd / "tool-provider",
    ]
    return [base / name for base in bases for name in _ENTRY_NAMES]


def discover_provider_path(
    override: str | os.PathLike[str] | None = None,
    *,
    home: Path | None = None,
    cwd: Path | None = None,
) -> Path:
    """Resolve the provider entry point.

    An explicit override (argument, then ``AGENTWIRE_TOOL_PROVIDER_PATH``)
    is returned as-is even if it does not exist, so the caller can report
    ``ProviderNotFound`` against the path the user asked for. Without an
    override the first existing candidate wins; when none exists the first
    candidate is returned.
    """
    if override:
        return Path(override).expanduser()
    env_path = os.environ.get(PROVIDER_PATH_ENV)
    if env_path:
        return Path(env_path).expanduser()

    candidates = candidate_paths(home, cwd)
    for path in candidates:
        if path.is_file():
            return path
    return candidates[0]


def launch_command(path: Path) -> list[str]:
    """Pick the interpreter from the file suffix."""
    resolved = path.resolve()
    match resolved.suffix:
        case ".js" | ".mjs" | ".cjs":
            return [shutil.which("node") or "node", str(resolved)]
        case ".py":
            return [sys.executable, str(resolved)]
        case _:
            return [str(resolved)]
