"""AuditLogger — hash-chained JSONL trail of one conversation's tool activity."""

from __future__ import annotations

import hashlib
import json
import logging
import time
import uuid
from collections.abc import Iterable
from enum import Enum
from pathlib import Path
from typing import IO, Any

logger = logging.getLogger(__name__)

GENESIS = "0" * 64
REDACTED = "[REDACTED]"
_SENSITIVE_MARKERS = ("password", "token", "key", "secret", "credential", "apikey")


class AuditEventType(Enum):
    CONVERSATION_START = "conversation_start"
    CONVERSATION_END = "conversation_end"
    TOOL_EXECUTION = "tool_execution"
    PERMISSION_DECISION = "permission_decision"


def redact(value: Any) -> Any:
    """Replace values of secret-looking keys, recursing into containers."""
    if isinstance(value, dict):
        return {
            k: REDACTED if _is_sensitive(k) else redact(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [redact(v) for v in value]
    return value


def _is_sensitive(key: Any) -> bool:
    lowered = str(key).lower().replace("_", "").replace("-", "")
    return any(marker in lowered for marker in _SENSITIVE_MARKERS)


def record_digest(record: dict[str, Any]) -> str:
    """SHA-256 of a record's canonical JSON, ignoring its own ``hash``."""
    body = {k: v for k, v in record.items() if k != "hash"}
    canonical = json.dumps(body, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def chain_errors(lines: Iterable[str]) -> list[str]:
    """Walk JSONL records and describe every broken link or altered record.

    Stops at the first line that is not JSON, since nothing after it can be
    checked against a known predecessor.
    """
    problems: list[str] = []
    expected_prev = GENESIS
    for lineno, raw in enumerate(lines, 1):
        if not raw.strip():
            continue
        try:
            record = json.loads(raw)
        except json.JSONDecodeError as exc:
            problems.append(f"Line {lineno}: invalid JSON: {exc}")
            break

        stored = record.get("hash", "")
        if record_digest(record) != stored:
            problems.append(f"Line {lineno}: hash mismatch for {record.get('event_type', '?')}")
        prev = record.get("prev_hash", "")
        if prev != expected_prev:
            problems.append(
                f"Line {lineno}: prev_hash mismatch (expected {expected_prev[:12]}, got {prev[:12]})"
            )
        expected_prev = stored
    return problems


class AuditLogger:
    """Append-only audit trail for one conversation.

    Every record stores the digest of the record before it in ``prev_hash``,
    starting from :data:`GENESIS`, so edits and deletions show up in
    :meth:`verify_chain`. A logger that cannot open its file turns itself
    off; write failures are logged and the conversation carries on.
    """

    def __init__(
        self,
        conversation_id: str,
        *,
        enabled: bool = True,
        log_tool_args: bool = True,
        audit_dir: Path | None = None,
    ) -> None:
        self._conversation_id = conversation_id
        self._log_tool_args = log_tool_args
        self._prev_hash = GENESIS
        self._seq = 0
        self._handle: IO[str] | None = None
        self._log_path: Path | None = None
        if enabled:
            self._open(audit_dir or Path.home() / ".agentwire" / "audit")

    def _open(self, audit_dir: Path) -> None:
        path = audit_dir / f"audit-{self._conversation_id}.jsonl"
        try:
            audit_dir.mkdir(parents=True, exist_ok=True)
            self._handle = path.open("a", encoding="utf-8")
        except OSError as exc:
            logger.warning("Audit log disabled, cannot open %s: %s", path, exc)
            return
        self._log_path = path

    def __enter__(self) -> AuditLogger:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    @property
    def enabled(self) -> bool:
        return self._handle is not None

    @property
    def log_path(self) -> Path | None:
        return self._log_path

    @property
    def event_count(self) -> int:
        return self._seq

    @staticmethod
    def verify_chain(log_path: Path) -> tuple[bool, list[str]]:
        """Return ``(valid, errors)`` for the trail stored at *log_path*."""
        with open(log_path, encoding="utf-8") as f:
            problems = chain_errors(f)
        return not problems, problems

    def _append(self, event_type: AuditEventType, data: dict[str, Any]) -> str | None:
        """Append one record and advance the chain. Returns its id."""
        if self._handle is None:
            return None

        record: dict[str, Any] = {
            "event_id": uuid.uuid4().hex[:16],
            "seq": self._seq + 1,
            "timestamp": time.time(),
            "event_type": event_type.value,
            "conversation_id": self._conversation_id,
            "data": data,
            "prev_hash": self._prev_hash,
        }
        try:
            record["hash"] = record_digest(record)
            self._handle.write(json.dumps(record, separators=(",", ":"), default=str) + "\n")
            self._handle.flush()
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Failed to write audit event %s: %s", event_type.value, exc)
            return None

        self._prev_hash = record["hash"]
        self._seq += 1
        return record["event_id"]

    # -- Event helpers ----------------------------------------------------

    def log_conversation_start(self, provider: str, model: str | None) -> str | None:
        return self._append(AuditEventType.CONVERSATION_START, {
            "provider": provider,
            "model": model,
        })

    def log_conversation_end(self, *, turns: int = 0, tool_calls: int = 0,
                             stop_reason: str = "") -> str | None:
        return self._append(AuditEventType.CONVERSATION_END, {
            "turns": turns,
            "tool_calls": tool_calls,
            "stop_reason": stop_reason,
        })

    def log_tool_execution(
        self,
        tool_name: str,
        args: dict[str, Any] | None,
        *,
        success: bool,
        duration_ms: float,
        error: str | None = None,
        batch_id: str | None = None,
        batch_size: int = 1,
        remote: bool = False,
    ) -> str | None:
        data: dict[str, Any] = {
            "tool": tool_name,
            "success": success,
            "duration_ms": round(duration_ms, 2),
            "remote": remote,
            "batch_id": batch_id,
            "batch_size": batch_size,
        }
        if error:
            data["error"] = error
        if self._log_tool_args and args:
            data["args"] = redact(args)
        return self._append(AuditEventType.TOOL_EXECUTION, data)

    def log_permission_decision(self, tool_name: str, operation: str, approved: bool) -> str | None:
        return self._append(AuditEventType.PERMISSION_DECISION, {
            "tool": tool_name,
            "operation": operation,
            "approved": approved,
        })
