"""OutputStore — spill oversized tool output to files the model can Read."""

from __future__ import annotations

import logging
import re
import shutil
import tempfile
import time
from pathlib import Path

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")


class OutputStore:
    """One file per tool_use_id, scoped to a directory owned by this process.

    Re-persisting the same tool_use_id (the history is re-truncated on every
    turn) returns the existing path instead of writing a new file.
    """

    def __init__(self, root: Path | None = None) -> None:
        self._root = root
        self._owns_root = root is None
        self._paths: dict[str, Path] = {}

    @property
    def root(self) -> Path:
        if self._root is None:
            self._root = Path(tempfile.mkdtemp(prefix="agentwire-outputs-"))
        return self._root

    def get(self, tool_use_id: str) -> Path | None:
        return self._paths.get(tool_use_id)

    def persist(self, tool_use_id: str, tool_name: str, content: str) -> Path:
        """Write ``content`` once and return its path. Raises ``OSError``."""
        existing = self._paths.get(tool_use_id)
        if existing is not None and existing.exists():
            return existing

        self.root.mkdir(parents=True, exist_ok=True)
        safe_name = _UNSAFE.sub("_", tool_name) or "tool"
        safe_id = _UNSAFE.sub("_", tool_use_id)[-12:] or "noid"
        path = self.root / f"{safe_name}_{safe_id}_{int(time.time() * 1000)}.txt"
        path.write_text(content, encoding="utf-8")
        self._paths[tool_use_id] = path
        logger.debug("Persisted %d chars of %s output to %s", len(content), tool_name, path)
        return path

    def cleanup(self) -> None:
        """Remove the scoped directory if this store created it."""
        if self._owns_root and self._root is not None:
            shutil.rmtree(self._root, ignore_errors=True)
            self._root = None
        self._paths.clear()
