"""Stdio MCP client for the external tool provider."""

from agentwire.rpc.client import StdioRpcClient
from agentwire.rpc.discovery import discover_provider_path

__all__ = ["StdioRpcClient", "discover_provider_path"]
