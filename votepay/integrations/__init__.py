"""External integrations for payment processing."""
from .gateway_client import (
    ContributionRequest,
    GatewayClient,
    GatewayError,
    GatewayErrorType,
    GatewayResponse,
)

__all__ = [
    "ContributionRequest",
    "GatewayClient",
    "GatewayError",
    "GatewayErrorType",
    "GatewayResponse",
]
