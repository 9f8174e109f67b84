"""Server side: multi-provider streaming gateway."""

from agentwire.gateway.providers import Provider
from agentwire.gateway.request import GatewayRequest
from agentwire.gateway.service import ProviderGateway

__all__ = ["GatewayRequest", "Provider", "ProviderGateway"]
