"""Tool execution audit log."""

from agentwire.audit.logger import AuditLogger

__all__ = ["AuditLogger"]
