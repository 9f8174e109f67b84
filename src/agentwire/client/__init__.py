"""Client side of the unified stream."""

from agentwire.client.stream import StreamParser
from agentwire.client.transport import GatewayClient, Transport

__all__ = ["GatewayClient", "StreamParser", "Transport"]
